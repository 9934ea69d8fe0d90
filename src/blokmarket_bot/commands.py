"""Slash commands. Each handler checks access, gathers options and calls a core service."""

import io
import logging
from typing import TYPE_CHECKING, Optional

import discord
from discord import app_commands

from .embeds import moderator_embed, purchaser_embed
from .licensing import (
    IssuanceReport,
    IssuanceRequest,
    IssuanceValidationError,
    resolve_attachments,
    validate_request,
)
from .moderation import (
    ANNOUNCEMENT_STYLES,
    CLEAR_SCAN_LIMIT,
    build_announcement_embed,
    build_announcement_view,
    select_messages_to_clear,
    split_by_age,
)
from .obfuscator import PRESET_EMOJIS, PRESETS, ObfuscationError, format_bytes, output_filename

if TYPE_CHECKING:
    from .bot import BlokMarketBot

logger = logging.getLogger(__name__)

MISSING_PERMISSIONS_CODE = 50013


async def _respond(interaction: discord.Interaction, content: str) -> None:
    """Ephemeral reply, or an edit of the deferred response."""
    if interaction.response.is_done():
        await interaction.edit_original_response(content=content)
    else:
        await interaction.response.send_message(content, ephemeral=True)


async def check_access(bot: "BlokMarketBot", interaction: discord.Interaction, *, permission: str, label: str) -> bool:
    """Guild whitelist first, member permission second. Replies and returns False on denial."""
    messages = bot.yaml_config
    command = interaction.command.name if interaction.command else "unknown"
    if interaction.guild is None:
        await _respond(interaction, messages.get_message("guild_only"))
        return False

    if not bot.settings.is_guild_allowed(interaction.guild.id):
        logger.warning(
            "[SECURITY] Unauthorized /%s attempt in %s (%s) by %s (%s)",
            command,
            interaction.guild.name,
            interaction.guild.id,
            interaction.user,
            interaction.user.id,
        )
        await _respond(interaction, messages.get_message("access_denied"))
        return False

    perms = interaction.permissions
    if not (perms.administrator or getattr(perms, permission, False)):
        await _respond(interaction, messages.get_message("missing_permission", permission=label))
        return False
    return True


def register_commands(bot: "BlokMarketBot") -> None:
    settings = bot.settings
    yaml_config = bot.yaml_config

    @bot.tree.command(name="clear", description="Clear messages in the channel")
    @app_commands.describe(
        amount="Number of messages to delete (1-100)",
        user="Only delete messages from this user (optional)",
    )
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_messages=True)
    async def clear_slash(
        interaction: discord.Interaction,
        amount: app_commands.Range[int, 1, 100],
        user: Optional[discord.User] = None,
    ):
        await interaction.response.defer(ephemeral=True)
        if not await check_access(bot, interaction, permission="manage_messages", label="Manage Messages"):
            return
        if not interaction.app_permissions.manage_messages:
            await _respond(interaction, yaml_config.get_message("bot_missing_permission", permission="Manage Messages"))
            return

        channel = interaction.channel
        try:
            fetched = [message async for message in channel.history(limit=CLEAR_SCAN_LIMIT)]
            selected = select_messages_to_clear(fetched, amount, user.id if user else None)
            if not selected:
                await _respond(
                    interaction,
                    f"No messages found from {user.mention} in the last {CLEAR_SCAN_LIMIT} messages."
                    if user
                    else "No messages found to delete.",
                )
                return

            fresh, _ = split_by_age(selected)
            if not fresh:
                await _respond(interaction, "All selected messages are older than 14 days and cannot be bulk deleted.")
                return

            await channel.delete_messages(fresh)
        except discord.HTTPException as exc:
            logger.exception("Clear command failed in %s", channel)
            reason = (
                "> I don't have permission to delete messages."
                if getattr(exc, "code", None) == MISSING_PERMISSIONS_CODE
                else "> An unexpected error occurred. Please try again."
            )
            await _respond(interaction, f"**Failed to delete messages.**\n\n{reason}")
            return

        details = [
            f"**Requested:** {amount} message(s)",
            f"**Deleted:** {len(fresh)} message(s)",
            f"**Channel:** {channel.mention}",
        ]
        if user:
            details.append(f"**Target User:** {user.mention}")
        details.append(f"**Moderator:** {interaction.user.mention}")
        embed = discord.Embed(
            title="Messages Cleared",
            description=(
                f"Successfully deleted **{len(fresh)}** message(s)"
                + (f" from {user.mention}" if user else "")
                + f" in {channel.mention}"
            ),
            color=0x00FF87,
        )
        embed.add_field(name="Details", value="\n".join(details), inline=False)
        embed.set_footer(text=f"Cleared by {interaction.user}")
        await interaction.edit_original_response(embed=embed)
        logger.info(
            "[CLEAR] %s deleted %d messages in #%s%s",
            interaction.user,
            len(fresh),
            getattr(channel, "name", channel.id),
            f" from {user}" if user else "",
        )

    @bot.tree.command(name="announce", description="Send an announcement to a channel")
    @app_commands.describe(
        title="Announcement title",
        message="Announcement message",
        channel="Channel to send the announcement to",
        style="Announcement type/style",
        image="Image URL (optional)",
        thumbnail="Thumbnail URL (optional)",
        footer="Footer text (optional)",
        ping="Role to ping (optional)",
    )
    @app_commands.rename(style="type")
    @app_commands.choices(
        style=[
            app_commands.Choice(name="📢 General", value="general"),
            app_commands.Choice(name="🎉 Event", value="event"),
            app_commands.Choice(name="⚠️ Important", value="important"),
            app_commands.Choice(name="🔔 Update", value="update"),
            app_commands.Choice(name="🎁 Giveaway", value="giveaway"),
            app_commands.Choice(name="🚨 Alert", value="alert"),
        ]
    )
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_messages=True)
    async def announce_slash(
        interaction: discord.Interaction,
        title: app_commands.Range[str, 1, 256],
        message: app_commands.Range[str, 1, 4000],
        channel: discord.TextChannel,
        style: Optional[app_commands.Choice[str]] = None,
        image: Optional[str] = None,
        thumbnail: Optional[str] = None,
        footer: Optional[app_commands.Range[str, 1, 2048]] = None,
        ping: Optional[discord.Role] = None,
    ):
        await interaction.response.defer(ephemeral=True)
        if not await check_access(bot, interaction, permission="manage_messages", label="Manage Messages"):
            return

        if not channel.permissions_for(interaction.guild.me).send_messages:
            await _respond(interaction, f"**I don't have permission in {channel.mention}!**\n> Required: Send Messages")
            return

        style_key = style.value if style else "general"
        embed = build_announcement_embed(
            title=title,
            message=message,
            style_key=style_key,
            author_name=str(interaction.user),
            author_avatar_url=interaction.user.display_avatar.url,
            image_url=image,
            thumbnail_url=thumbnail,
            footer=footer,
        )
        try:
            await channel.send(
                content=ping.mention if ping else None,
                embed=embed,
                view=build_announcement_view(interaction.guild.id),
                allowed_mentions=discord.AllowedMentions(roles=True),
            )
        except discord.HTTPException as exc:
            logger.exception("Announce command failed for #%s", channel)
            reason = (
                "> I don't have permission to send messages in that channel."
                if getattr(exc, "code", None) == MISSING_PERMISSIONS_CODE
                else "> An unexpected error occurred. Please try again."
            )
            await _respond(interaction, f"**Failed to send announcement.**\n\n{reason}")
            return

        success = discord.Embed(
            title="Announcement Sent Successfully!",
            description=f"Your announcement has been posted to {channel.mention}",
            color=0x57F287,
        )
        success.add_field(name="Title", value=title, inline=False)
        success.add_field(name="Type", value=ANNOUNCEMENT_STYLES[style_key].label, inline=True)
        success.add_field(name="Channel", value=channel.mention, inline=True)
        await interaction.edit_original_response(embed=success)
        logger.info('[ANNOUNCE] %s posted "%s" to #%s', interaction.user, title, channel.name)

    @bot.tree.command(name="genkey", description="Generate a premium license key and send it to the purchaser")
    @app_commands.describe(
        roblox_id="Roblox User ID (Owner Map)",
        user="Discord user who purchased the license",
        tutorial_url="Tutorial link sent with the license (optional)",
        bagibagi_channel="Channel where the BagiBagi bot posts this customer's donations (optional)",
        koin_rate="Rupiah per BagiBagi Koin (optional)",
        files="File names to attach, comma separated (e.g. script.lua,readme.txt)",
    )
    @app_commands.guild_only()
    @app_commands.default_permissions(administrator=True)
    async def genkey_slash(
        interaction: discord.Interaction,
        roblox_id: str,
        user: discord.User,
        tutorial_url: Optional[str] = None,
        bagibagi_channel: Optional[discord.TextChannel] = None,
        koin_rate: Optional[app_commands.Range[int, 1]] = None,
        files: Optional[str] = None,
    ):
        if not await check_access(bot, interaction, permission="administrator", label="Administrator"):
            return

        permitted = True
        if bagibagi_channel is not None:
            perms = bagibagi_channel.permissions_for(interaction.guild.me)
            permitted = perms.view_channel and perms.read_message_history and perms.add_reactions

        request = IssuanceRequest(
            external_id=roblox_id,
            owner_id=str(user.id),
            owner_name=user.name,
            tutorial_url=tutorial_url,
            bagibagi_channel_id=str(bagibagi_channel.id) if bagibagi_channel else None,
            bagibagi_channel_permitted=permitted,
            koin_rate=koin_rate or settings.default_koin_rate,
        )
        try:
            validate_request(request)
        except IssuanceValidationError as exc:
            await _respond(interaction, f"❌ {exc}")
            return

        await interaction.response.defer()
        attachments = resolve_attachments(settings.attachments_dir, files)
        brand = yaml_config.get("bot_settings.brand", "BLOKMARKET")
        script_id = yaml_config.get("bot_settings.script_id", "DONATE_PLATFORM")

        async def deliver(report: IssuanceReport) -> bool:
            try:
                await user.send(
                    embed=purchaser_embed(report, brand=brand, script_id=script_id, file_count=len(attachments)),
                    files=[discord.File(path) for path in attachments],
                )
            except discord.HTTPException as exc:
                logger.warning("Failed to DM license %s to %s: %s", report.license.key, user, exc)
                return False
            logger.info("[DM] Sent license + %d file(s) to %s", len(attachments), user)
            return True

        try:
            report = await bot.issuer.issue(request, deliver)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to issue license for roblox_id=%s", roblox_id)
            await interaction.followup.send(yaml_config.get_message("genkey_failed"))
            return

        embeds = [moderator_embed(report, owner_mention=user.mention, brand=brand, script_id=script_id)]
        if report.delivered:
            content = f"License successfully sent to {user.mention}!"
        else:
            # DMs closed: the credentials go to the invoking channel instead.
            content = (
                f"**License generated but couldn't send DM!**\n\n"
                f"{user.mention} has DMs disabled. Their credentials are below:"
            )
            embeds.append(purchaser_embed(report, brand=brand, script_id=script_id))
        await interaction.followup.send(content=content, embeds=embeds)

    @bot.tree.command(name="sendimage", description="Send an image through the bot")
    @app_commands.describe(file="Image to send")
    async def sendimage_slash(interaction: discord.Interaction, file: discord.Attachment):
        if file.content_type and not file.content_type.startswith("image/"):
            await _respond(interaction, "❌ Only image files can be sent.")
            return

        await interaction.response.defer()
        try:
            upload = await file.to_file()
            await interaction.followup.send(content=f"📤 Mengirim gambar **{file.filename}**", file=upload)
        except discord.HTTPException:
            logger.exception("Failed to relay image %s for %s", file.filename, interaction.user)
            await interaction.followup.send("❌ Gagal mengirim gambar.")

    @bot.tree.command(name="obfuscate", description="Obfuscate Lua code using Prometheus")
    @app_commands.describe(
        file="Lua file to obfuscate (.lua)",
        preset="Obfuscation strength preset",
        output_name="Custom output filename (without extension)",
    )
    @app_commands.choices(
        preset=[
            app_commands.Choice(name="🟢 Weak - Fast, light obfuscation", value="weak"),
            app_commands.Choice(name="🟡 Medium - Balanced obfuscation", value="medium"),
            app_commands.Choice(name="🔴 Strong - Maximum protection (slower)", value="strong"),
            app_commands.Choice(name="📦 Minify - Only minification", value="minify"),
        ]
    )
    async def obfuscate_slash(
        interaction: discord.Interaction,
        file: discord.Attachment,
        preset: Optional[app_commands.Choice[str]] = None,
        output_name: Optional[str] = None,
    ):
        try:
            bot.obfuscator.check_upload(file.filename, file.size)
        except ObfuscationError as exc:
            await _respond(interaction, f"❌ **Error:** {exc}")
            return

        await interaction.response.defer()
        preset_key = preset.value if preset else "strong"
        try:
            code = (await file.read()).decode("utf-8", errors="replace")
            result = await bot.obfuscator.obfuscate(code, preset_key)
        except (ObfuscationError, discord.HTTPException) as exc:
            logger.error("[OBFUSCATE] Failed for %s file=%s: %s", interaction.user, file.filename, exc)
            await interaction.followup.send(
                "❌ **Obfuscation Failed**\n\n"
                f"**Error:** {exc}\n\n"
                "*If this issue persists, please contact support.*"
            )
            return

        upload = discord.File(io.BytesIO(result.code.encode("utf-8")), filename=output_filename(file.filename, output_name))
        await interaction.followup.send(
            content="\n".join(
                [
                    "✅ **Obfuscation Complete!**",
                    "",
                    f"📄 **File:** `{file.filename}`",
                    f"🔒 **Preset:** {PRESET_EMOJIS[preset_key]} {PRESETS[preset_key]}",
                    f"⏱️ **Duration:** {result.duration:.2f}s",
                    f"📊 **Size:** {format_bytes(result.original_size)} → "
                    f"{format_bytes(result.obfuscated_size)} ({result.size_change})",
                    "",
                    "*Powered by Prometheus Lua Obfuscator*",
                ]
            ),
            file=upload,
        )
        logger.info(
            "[OBFUSCATE] Success user=%s file=%s preset=%s duration=%.2fs",
            interaction.user,
            file.filename,
            preset_key,
            result.duration,
        )

    @bot.tree.command(name="sync", description="Force sync slash commands (Restricted)")
    @app_commands.describe(scope="Whether to sync 'global' or 'guild' commands (default: global)")
    async def sync_slash(interaction: discord.Interaction, scope: str = "global"):
        allowed_ids = {str(uid) for uid in yaml_config.get("bot_settings.sync_allowed_user_ids", [])}
        if str(interaction.user.id) not in allowed_ids:
            await _respond(interaction, yaml_config.get_message("not_authorized"))
            return

        guild_scope = scope.lower() == "guild"
        if guild_scope and interaction.guild is None:
            await _respond(interaction, "❌ Guild sync has to be run inside a server.")
            return

        await interaction.response.defer(ephemeral=True)
        try:
            if guild_scope:
                bot.tree.copy_global_to(guild=interaction.guild)
                synced = await bot.tree.sync(guild=interaction.guild)
            else:
                synced = await bot.tree.sync()
        except discord.HTTPException as exc:
            logger.error("[SYNC] %s sync failed: %s", scope, exc)
            await _respond(interaction, f"❌ Failed to sync: {exc}")
            return

        where = "to this server" if guild_scope else "globally (changes can take up to an hour to appear)"
        await _respond(interaction, f"✅ Synced {len(synced)} command(s) {where}.")
        logger.info("[SYNC] %s synced %d command(s) %s", interaction.user, len(synced), "guild" if guild_scope else "global")

    @bot.tree.error
    async def on_app_command_error(interaction: discord.Interaction, error: app_commands.AppCommandError):
        name = interaction.command.name if interaction.command else "unknown"
        logger.error("Command '/%s' failed", name, exc_info=error)
        content = yaml_config.get_message("command_error")
        try:
            if interaction.response.is_done():
                await interaction.followup.send(content, ephemeral=True)
            else:
                await interaction.response.send_message(content, ephemeral=True)
        except discord.HTTPException as exc:
            logger.error("Failed to send error message: %s", exc)
