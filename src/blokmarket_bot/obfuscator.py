import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

PRESETS = {
    "weak": "Weak",
    "medium": "Medium",
    "strong": "Strong",
    "minify": "Minify",
}

PRESET_EMOJIS = {
    "weak": "🟢",
    "medium": "🟡",
    "strong": "🔴",
    "minify": "📦",
}

WRAPPER_TEMPLATE = """\
package.path = "{prometheus_path}/?.lua;" .. package.path

local ok, Prometheus = pcall(require, "prometheus")
if not ok then
    io.stderr:write("ERROR: Failed to load Prometheus: " .. tostring(Prometheus))
    os.exit(1)
end

Prometheus.Logger.logLevel = Prometheus.Logger.LogLevel.Error

local inputFile = io.open("{input_path}", "r")
if not inputFile then
    io.stderr:write("ERROR: Could not open input file")
    os.exit(1)
end
local code = inputFile:read("*all")
inputFile:close()

local presetConfig = Prometheus.Presets["{preset}"]
if not presetConfig then
    io.stderr:write("ERROR: Invalid preset: {preset}")
    os.exit(1)
end

local pipeline = Prometheus.Pipeline:fromConfig(presetConfig)
local success, result = pcall(function()
    return pipeline:apply(code)
end)
if not success then
    io.stderr:write("ERROR: Obfuscation failed: " .. tostring(result))
    os.exit(1)
end

local outputFile = io.open("{output_path}", "w")
if not outputFile then
    io.stderr:write("ERROR: Could not create output file")
    os.exit(1)
end
outputFile:write(result)
outputFile:close()

print("SUCCESS")
"""


class ObfuscationError(Exception):
    """Obfuscation failed; ``str(exc)`` is safe to show to the user."""


@dataclass
class ObfuscationResult:
    code: str
    duration: float
    original_size: int
    obfuscated_size: int

    @property
    def size_change(self) -> str:
        if not self.original_size:
            return "n/a"
        change = (self.obfuscated_size - self.original_size) / self.original_size * 100
        return f"+{change:.1f}%" if change > 0 else f"{change:.1f}%"


def format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.2f} KB"
    return f"{size / (1024 * 1024):.2f} MB"


def output_filename(original_name: str, custom_name: Optional[str] = None) -> str:
    if custom_name:
        return f"{Path(custom_name).name}.lua"
    stem = original_name[:-4] if original_name.endswith(".lua") else original_name
    return f"{stem}_obfuscated.lua"


def _lua_path(path: Path) -> str:
    return str(path).replace("\\", "/").replace('"', '\\"')


def build_wrapper_script(prometheus_path: Path, input_path: Path, output_path: Path, preset: str) -> str:
    return WRAPPER_TEMPLATE.format(
        prometheus_path=_lua_path(prometheus_path),
        input_path=_lua_path(input_path),
        output_path=_lua_path(output_path),
        preset=PRESETS[preset],
    )


def explain_failure(raw: str) -> str:
    """Map interpreter stderr onto a message for the person who uploaded the file."""
    lowered = raw.lower()
    if "failed to load prometheus" in lowered:
        return "Prometheus is not properly installed. Please contact an administrator."
    if "failed to start lua" in lowered:
        return "Lua interpreter not found. Please contact an administrator."
    if "syntax error" in lowered or "parse" in lowered:
        return "Your Lua code contains syntax errors. Please fix them and try again."
    if "timeout" in lowered or "timed out" in lowered:
        return "Obfuscation timed out. Try using a weaker preset or smaller file."
    return raw.strip() or "An unexpected error occurred."


class PrometheusObfuscator:
    """Runs the Prometheus Lua obfuscator through a Lua interpreter subprocess."""

    def __init__(
        self,
        *,
        lua_path: str,
        prometheus_path: str,
        temp_dir: str,
        max_bytes: int = 512000,
        timeout: float = 60.0,
    ):
        self.lua_path = lua_path
        self.prometheus_path = Path(prometheus_path).resolve()
        self.temp_dir = Path(temp_dir)
        self.max_bytes = max_bytes
        self.timeout = timeout

    def check_upload(self, filename: str, size: int) -> None:
        if not filename.endswith(".lua"):
            raise ObfuscationError("Please upload a `.lua` file.")
        if size > self.max_bytes:
            raise ObfuscationError(
                f"File too large. Maximum size is {self.max_bytes / 1024 / 1024:.2f}MB."
            )

    async def obfuscate(self, code: str, preset: str = "strong") -> ObfuscationResult:
        if preset not in PRESETS:
            raise ObfuscationError(f"Unknown preset `{preset}`.")
        if not code.strip():
            raise ObfuscationError("File is empty")

        self.temp_dir.mkdir(parents=True, exist_ok=True)
        session_id = secrets.token_hex(8)
        input_path = (self.temp_dir / f"input_{session_id}.lua").resolve()
        output_path = (self.temp_dir / f"output_{session_id}.lua").resolve()
        wrapper_path = (self.temp_dir / f"wrapper_{session_id}.lua").resolve()

        try:
            input_path.write_text(code, encoding="utf-8")
            wrapper_path.write_text(
                build_wrapper_script(self.prometheus_path, input_path, output_path, preset),
                encoding="utf-8",
            )
            duration = await self._run(wrapper_path)
            if not output_path.exists():
                raise ObfuscationError("Output file was not created")
            obfuscated = output_path.read_text(encoding="utf-8")
        finally:
            for path in (input_path, output_path, wrapper_path):
                try:
                    path.unlink(missing_ok=True)
                except OSError as exc:
                    logger.error("Failed to clean up %s: %s", path, exc)

        return ObfuscationResult(
            code=obfuscated,
            duration=duration,
            original_size=len(code.encode("utf-8")),
            obfuscated_size=len(obfuscated.encode("utf-8")),
        )

    async def _run(self, wrapper_path: Path) -> float:
        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                self.lua_path,
                str(wrapper_path),
                cwd=str(self.prometheus_path) if self.prometheus_path.is_dir() else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ObfuscationError(explain_failure(f"Failed to start Lua: {exc}")) from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise ObfuscationError(explain_failure("timeout")) from exc

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        if process.returncode != 0 or "SUCCESS" not in out:
            raise ObfuscationError(explain_failure(err or f"Process exited with code {process.returncode}"))
        return time.monotonic() - started
