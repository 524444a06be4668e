import discord
from discord import app_commands
from discord.ext import commands
import logging
import os
from typing import Optional, Sequence

from . import messages
from .config_manager import ConfigManager
from .data_manager import DataManager
from .errors import StoreUnavailable
from .models import Button, OutcomeKind, QuizDefinition
from .progress_feed import ProgressFeed
from .score_store import ScoreStore
from .session_controller import SessionController

logger = logging.getLogger(__name__)

# Outcomes answered with a short private notice on the pressed button
NOTICE_KINDS = frozenset({
    OutcomeKind.SESSION_BUSY,
    OutcomeKind.ALREADY_COMPLETED,
    OutcomeKind.QUIZ_NOT_FOUND,
    OutcomeKind.STALE_CALLBACK,
    OutcomeKind.FOREIGN_SESSION,
})

MAX_ROWS = 5


def build_view(buttons: Sequence[Button]) -> discord.ui.View:
    """One option per row, like a vertical keyboard, while rows last."""
    view = discord.ui.View(timeout=None)
    for index, button in enumerate(buttons):
        view.add_item(discord.ui.Button(
            label=button.label,
            custom_id=button.custom_id,
            style=discord.ButtonStyle.primary,
            row=index if index < MAX_ROWS else None
        ))
    return view


class DiscordTransport:
    """Chat transport that sends and deletes messages through a Discord client."""

    def __init__(self, client: discord.Client):
        self.client = client

    def _channel(self, chat_id: int):
        return self.client.get_channel(chat_id) or self.client.get_partial_messageable(chat_id)

    async def send_message(self, chat_id: int, text: str, buttons: Optional[Sequence[Button]] = None) -> int:
        channel = self._channel(chat_id)
        if buttons:
            view = build_view(buttons)
            message = await channel.send(content=text, view=view)
            # Presses are routed by custom_id in on_interaction, not by the view
            view.stop()
        else:
            message = await channel.send(content=text)
        return message.id

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        channel = self._channel(chat_id)
        try:
            await channel.get_partial_message(message_id).delete()
        except discord.NotFound:
            logger.debug(f"Message {message_id} in chat {chat_id} was already deleted")


class QuizBot(commands.Bot):
    """Discord bot running self-paced per-user quizzes"""

    def __init__(self, config=None):
        intents = discord.Intents.none()
        intents.guilds = True  # Required for slash commands

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}

        self.config_manager: Optional[ConfigManager] = None
        self.data_manager: Optional[DataManager] = None
        self.score_store: Optional[ScoreStore] = None
        self.progress_feed: Optional[ProgressFeed] = None
        self.controller: Optional[SessionController] = None

    async def setup_hook(self):
        """Called when the bot is starting up"""
        try:
            logger.info("Setting up bot components...")

            self.config_manager = ConfigManager(self.app_config)
            validation = self.config_manager.validate_settings()
            for issue in validation['issues']:
                logger.error(f"Configuration issue: {issue}")
            for warning in validation['warnings']:
                logger.warning(warning)
            settings = self.config_manager.get_settings()

            self.data_manager = DataManager(settings.quiz_directory)
            self.load_quiz_data()

            self.score_store = ScoreStore(settings.database_url)
            await self.score_store.init()

            self.progress_feed = ProgressFeed()
            self.controller = SessionController(
                self.data_manager,
                self.config_manager,
                self.score_store,
                DiscordTransport(self),
                progress_feed=self.progress_feed
            )

            await self.setup_commands()

            logger.info("Bot setup completed successfully")

        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            raise

    def load_quiz_data(self):
        """Load quiz files from the quiz directory"""
        loaded_quizzes = self.data_manager.load_quiz_files()
        logger.info(f"Loaded {len(loaded_quizzes)} quizzes from {self.data_manager.quiz_directory}")
        for error in self.data_manager.get_load_errors():
            logger.warning(f"Quiz loading problem: {error}")

    async def setup_commands(self):
        """Register slash commands"""

        @self.tree.command(name="start", description="Start the latest quiz")
        async def start_command(interaction: discord.Interaction):
            await self.handle_start(interaction)

        @self.tree.command(name="help", description="Show all available commands")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="listquizzes", description="Show available quizzes and your progress")
        async def list_quizzes_command(interaction: discord.Interaction):
            await self.handle_list_quizzes(interaction)

        @self.tree.command(name="leaderboard", description="View the top players")
        async def leaderboard_command(interaction: discord.Interaction):
            await self.handle_leaderboard(interaction)

        @self.tree.command(name="currentleaderboard", description="Admin: detailed leaderboard with user ids")
        async def current_leaderboard_command(interaction: discord.Interaction):
            await self.handle_current_leaderboard(interaction)

        @self.tree.command(name="resetprogress", description="Admin: clear a user's quiz progress")
        @app_commands.describe(user="User whose progress should be cleared")
        async def reset_progress_command(interaction: discord.Interaction, user: discord.User):
            await self.handle_reset_progress(interaction, user)

        for definition in self.data_manager.get_available_quizzes():
            self.tree.add_command(self.make_quiz_command(definition))

        logger.info("Slash commands registered")

    def make_quiz_command(self, definition: QuizDefinition) -> app_commands.Command:
        """Build the /quiz_<id> command for one quiz."""
        quiz_id = definition.id

        async def quiz_command(interaction: discord.Interaction):
            await self.handle_quiz_command(interaction, quiz_id)

        return app_commands.Command(
            name=f"quiz_{quiz_id}",
            description=f"Start {definition.title}"[:100],
            callback=quiz_command
        )

    async def on_ready(self):
        """Called when the bot has connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guilds")
        if self.controller:
            self.controller.delivery_queue.resume_all()

        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_disconnect(self):
        logger.warning("Disconnected from Discord, holding outbound deliveries")
        if self.controller:
            self.controller.delivery_queue.suspend_all()

    async def on_resumed(self):
        logger.info("Discord session resumed, releasing outbound deliveries")
        if self.controller:
            self.controller.delivery_queue.resume_all()

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        await super().close()
        if self.score_store:
            await self.score_store.close()

    async def on_interaction(self, interaction: discord.Interaction):
        """Route quiz button presses to the session controller"""
        if interaction.type is not discord.InteractionType.component or self.controller is None:
            return

        custom_id = (interaction.data or {}).get('custom_id')
        if not self.controller.codec.is_ours(custom_id):
            return

        try:
            # Always acknowledge so the client stops its loading state
            await interaction.response.defer()
        except discord.HTTPException as e:
            logger.warning(f"Failed to acknowledge button press: {e}")

        result = await self.controller.handle_callback(
            interaction.user.id,
            interaction.channel_id,
            custom_id,
            interaction.user.display_name
        )

        if result.kind in NOTICE_KINDS and result.user_message:
            try:
                await interaction.followup.send(result.user_message, ephemeral=True)
            except discord.HTTPException as e:
                logger.warning(f"Failed to send notice to user {interaction.user.id}: {e}")

    async def handle_start(self, interaction: discord.Interaction):
        """Handle /start: welcome message with a start button for the latest quiz"""
        await interaction.response.defer(thinking=True)
        definition = self.data_manager.get_latest_quiz()
        if definition is None:
            await interaction.followup.send("No quizzes are available right now.", ephemeral=True)
            return

        try:
            completed = await self.controller.has_completed(interaction.user.id, definition.id)
        except StoreUnavailable:
            await interaction.followup.send(messages.STORE_FAILURE, ephemeral=True)
            return

        if completed:
            embed = discord.Embed(
                title="✅ Already Completed",
                description=messages.ALREADY_COMPLETED + "\nUse /listquizzes to see other quizzes.",
                color=0x6699ff
            )
            await interaction.followup.send(embed=embed, ephemeral=True)
            return

        embed = discord.Embed(
            title="🎯 Quiz Bot",
            description=messages.welcome_text(definition),
            color=0x00ff00
        )
        view = build_view([self.controller.start_button(interaction.user.id, definition.id, "Start Quiz")])
        await interaction.followup.send(embed=embed, view=view)
        view.stop()

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        is_admin = self.config_manager.is_admin(interaction.user.id)
        embed = discord.Embed(
            description="\n".join(messages.help_lines(is_admin)),
            color=0x00ff00
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    async def handle_list_quizzes(self, interaction: discord.Interaction):
        """Handle /listquizzes with per-user completion status"""
        await interaction.response.defer(thinking=True)
        quizzes = self.data_manager.get_available_quizzes()
        if not quizzes:
            await interaction.followup.send("No quizzes are available right now.")
            return

        try:
            completed = await self.controller.completed_quizzes(interaction.user.id)
        except StoreUnavailable:
            await interaction.followup.send(messages.STORE_FAILURE, ephemeral=True)
            return

        embed = discord.Embed(description=messages.quiz_list_text(quizzes, completed), color=0x6699ff)
        buttons = [
            self.controller.start_button(interaction.user.id, definition.id, f"Start Quiz {definition.id}")
            for definition in quizzes
            if definition.id not in completed
        ][:25]
        if buttons:
            view = build_view(buttons)
            await interaction.followup.send(embed=embed, view=view)
            view.stop()
        else:
            await interaction.followup.send(embed=embed)

    async def handle_leaderboard(self, interaction: discord.Interaction):
        """Handle /leaderboard command"""
        await interaction.response.defer(thinking=True)
        try:
            entries = await self.controller.leaderboard()
        except StoreUnavailable:
            await interaction.followup.send(messages.STORE_FAILURE, ephemeral=True)
            return
        embed = discord.Embed(description=messages.leaderboard_text(entries), color=0xffd700)
        await interaction.followup.send(embed=embed)

    async def handle_current_leaderboard(self, interaction: discord.Interaction):
        """Handle the admin /currentleaderboard command"""
        if not await self.require_admin(interaction):
            return

        await interaction.response.defer(thinking=True, ephemeral=True)
        try:
            records = await self.controller.detailed_leaderboard()
        except StoreUnavailable:
            await interaction.followup.send(messages.STORE_FAILURE, ephemeral=True)
            return

        titles = {definition.id: definition.title for definition in self.data_manager.get_available_quizzes()}
        text = messages.detailed_leaderboard_text(records, titles)
        # Embed descriptions are capped at 4096 characters
        if len(text) > 4000:
            text = text[:4000].rsplit("\n", 1)[0] + "\n..."
        await interaction.followup.send(embed=discord.Embed(description=text, color=0x6699ff), ephemeral=True)

    async def handle_reset_progress(self, interaction: discord.Interaction, user: discord.User):
        """Handle the admin /resetprogress command"""
        if not await self.require_admin(interaction):
            return

        await interaction.response.defer(thinking=True, ephemeral=True)
        try:
            deleted = await self.controller.reset_user_progress(user.id)
        except StoreUnavailable:
            await interaction.followup.send(messages.STORE_FAILURE, ephemeral=True)
            return

        logger.info(f"Admin {interaction.user.id} reset progress for user {user.id}")
        await interaction.followup.send(
            f"✅ Cleared {deleted} quiz record(s) for {user.mention}.",
            ephemeral=True
        )

    async def handle_quiz_command(self, interaction: discord.Interaction, quiz_id: int):
        """Handle /quiz_<id>: start a specific quiz directly"""
        await interaction.response.defer(thinking=True, ephemeral=True)
        result = await self.controller.begin_quiz(
            interaction.user.id, interaction.channel_id, quiz_id, interaction.user.display_name
        )
        await interaction.followup.send(result.user_message or messages.GENERIC_FAILURE, ephemeral=True)

    async def require_admin(self, interaction: discord.Interaction) -> bool:
        if self.config_manager.is_admin(interaction.user.id):
            return True
        logger.warning(f"Non-admin user {interaction.user.id} tried an admin command")
        await self.send_error_response(interaction, "You are not authorized to use this command.", "⛔ Admin Only")
        return False

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        try:
            embed = discord.Embed(
                title=title,
                description=message,
                color=0xff0000
            )
            embed.set_footer(text="If this error persists, try using /help for available commands")

            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error("Failed to send error response to user")


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = QuizBot(config)

    try:
        logger.info("Starting Discord Quiz Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
