from datetime import datetime, timezone

import discord

from .licensing import IssuanceReport

SUCCESS_COLOR = 0x00FF87
PARTIAL_COLOR = 0xFEE75C


def purchaser_embed(report: IssuanceReport, *, brand: str, script_id: str, file_count: int = 0) -> discord.Embed:
    """Credentials for the purchaser; DM'd, or posted in the channel when DMs are closed."""
    record = report.license
    embed = discord.Embed(
        title=f"YOUR LICENSE {brand}",
        description=f"> Your {brand} license has been activated."
        + (f"\n> {file_count} file(s) are attached to this message." if file_count else ""),
        color=SUCCESS_COLOR,
        timestamp=datetime.now(timezone.utc),
    )
    embed.add_field(name="Your Assets", value=f"```yaml\nScript: {script_id}\n```", inline=False)
    embed.add_field(name="Roblox Account", value=f"**Owner Map ID:** `{record.roblox_id}`", inline=False)
    embed.add_field(name="Your License Key", value=f"```{record.key}```", inline=False)
    if record.has_webhook:
        webhook_lines = [f"**User Key:** `{record.webhook_user_key}`"]
        if record.webhook_api_key:
            webhook_lines.append(f"**API Key:** `{record.webhook_api_key}`")
        if record.webhook_url:
            webhook_lines.append(f"**Webhook URL:** {record.webhook_url}")
        embed.add_field(name="Donation Webhook", value="\n".join(webhook_lines), inline=False)
    else:
        embed.add_field(
            name="Donation Webhook",
            value="Webhook credentials are not available yet. An admin will set them up manually.",
            inline=False,
        )
    if record.tutorial_url:
        embed.add_field(name="Tutorial", value=record.tutorial_url, inline=False)
    embed.add_field(
        name="How to Use",
        value=(
            "`1.` Download all attached files\n"
            "`2.` Copy your license key above\n"
            "`3.` Follow the setup instructions\n"
            "`4.` Paste your key\n\n"
            "**Keep this key private - do not share!**"
        ),
        inline=False,
    )
    embed.set_footer(text=f"License System • {brand}")
    return embed


def moderator_embed(report: IssuanceReport, *, owner_mention: str, brand: str, script_id: str) -> discord.Embed:
    success = report.status == "success"
    embed = discord.Embed(
        title="LICENSE ACTIVATED" if success else "LICENSE ACTIVATED (PARTIAL)",
        color=SUCCESS_COLOR if success else PARTIAL_COLOR,
        timestamp=datetime.now(timezone.utc),
    )
    embed.add_field(name="Package Information", value=f"```yaml\nScript: {script_id}\n```", inline=False)
    embed.add_field(
        name="Owner Details",
        value=f"**Roblox ID:** `{report.license.roblox_id}`\n**Discord User:** {owner_mention}",
        inline=False,
    )
    embed.add_field(
        name="Status",
        value="\n".join(f"• {line}" for line in report.summary_lines()),
        inline=False,
    )
    embed.set_footer(text=f"License System • {brand}")
    return embed
