import discord
from discord.ext import commands
import logging
import asyncio
from typing import Dict, List, Optional
import os

from .categories import DIFFICULTIES, SELECTABLE_CATEGORIES, category_display_name, difficulty_display_name
from .config_manager import ConfigManager
from .models import GameState, Session
from .question_source import OpenTriviaClient
from .quiz_controller import QuizController, SessionEvent
from .quiz_engine import QuizEngine
from .score_store import ScoreStore
from .translator import TranslationAdapter

logger = logging.getLogger(__name__)

COLOR_INFO = 0x6699ff
COLOR_OK = 0x00ff00
COLOR_WARNING = 0xff6600
COLOR_ERROR = 0xff0000

MEDALS = ["🥇", "🥈", "🥉"]
BUTTON_LABEL_LIMIT = 80
SCOREBOARD_ROWS = 10


def _truncate(text: str, limit: int = BUTTON_LABEL_LIMIT) -> str:
    return text if len(text) <= limit else text[:limit - 1] + "…"


def _category_label(category_id: Optional[int], translator: Optional[TranslationAdapter]) -> str:
    if translator is not None:
        return translator.category_name(category_id)
    return category_display_name(category_id)


def _difficulty_label(difficulty: Optional[str], translator: Optional[TranslationAdapter]) -> str:
    if translator is not None:
        return translator.translate_label(difficulty)
    return difficulty_display_name(difficulty)


def build_session_embed(
    session: Session,
    translator: Optional[TranslationAdapter] = None,
    top_scores_count: int = 3
) -> discord.Embed:
    """
    Render a session snapshot as an embed.

    The loading and error overlays take precedence over the state's own
    screen.
    """
    if session.loading:
        return discord.Embed(
            title="⏳ Loading questions...",
            description="Fetching a fresh batch of questions",
            color=COLOR_INFO
        )

    if session.state == GameState.PLAYING and session.error is not None:
        embed = discord.Embed(
            title="❌ Could not load questions",
            description=session.error,
            color=COLOR_ERROR
        )
        embed.set_footer(text="Press Retry to try again")
        return embed

    if session.state == GameState.HOME:
        return discord.Embed(
            title="🎯 Trivia Quiz",
            description="Test your knowledge against the clock. Press **Play** to start.",
            color=COLOR_INFO
        )

    if session.state == GameState.CATEGORY_SELECTION:
        return discord.Embed(
            title="📚 Choose a category",
            color=COLOR_INFO
        )

    if session.state == GameState.DIFFICULTY_SELECTION:
        return discord.Embed(
            title="🎚️ Choose a difficulty",
            description=f"Category: **{_category_label(session.selected_category, translator)}**",
            color=COLOR_INFO
        )

    if session.state == GameState.PLAYING:
        return _build_question_embed(session)

    if session.state == GameState.FINISHED:
        embed = discord.Embed(
            title="🎉 Quiz complete!",
            description=f"Your score: **{session.score}/{session.total_questions}**",
            color=COLOR_OK
        )
        if session.validation_error:
            embed.add_field(name="⚠️ Name required", value=session.validation_error, inline=False)
        if session.error:
            embed.add_field(name="❌ Error", value=session.error, inline=False)
        embed.set_footer(text="Save your score or play again")
        return embed

    return _build_scoreboard_embed(session, top_scores_count)


def _build_question_embed(session: Session) -> discord.Embed:
    question = session.current_question
    remaining = session.time_remaining

    # Change color based on remaining time
    if session.answered:
        color = COLOR_INFO
        timer_emoji = "⏱️"
    elif remaining > 5:
        color = COLOR_OK
        timer_emoji = "⏱️"
    elif remaining > 2:
        color = COLOR_WARNING
        timer_emoji = "⚠️"
    else:
        color = COLOR_ERROR
        timer_emoji = "🚨"

    embed = discord.Embed(
        title=f"🎯 Question {session.current_index + 1}/{session.total_questions}",
        description=question.question if question else "",
        color=color
    )
    embed.add_field(
        name=f"{timer_emoji} Time Remaining",
        value=f"{remaining} second{'s' if remaining != 1 else ''}",
        inline=True
    )
    embed.add_field(name="🏆 Score", value=str(session.score), inline=True)

    if question is not None and session.answered:
        if session.timed_out:
            embed.add_field(
                name="⏰ Time's up!",
                value=f"Correct answer: **{question.correct_answer}**",
                inline=False
            )
        elif session.selected_answer == question.correct_answer:
            embed.add_field(name="✅ Correct!", value=f"**{question.correct_answer}**", inline=False)
        else:
            embed.add_field(
                name="❌ Wrong answer",
                value=f"Correct answer: **{question.correct_answer}**",
                inline=False
            )

    if question is not None:
        embed.set_footer(text=f"{question.category} • {question.difficulty}")
    return embed


def _build_scoreboard_embed(session: Session, top_scores_count: int) -> discord.Embed:
    embed = discord.Embed(title="🏆 Leaderboard", color=COLOR_INFO)
    if not session.scores:
        embed.description = "No scores saved yet."
        return embed

    lines = []
    for rank, entry in enumerate(session.scores[:SCOREBOARD_ROWS], start=1):
        marker = MEDALS[rank - 1] if rank <= min(top_scores_count, len(MEDALS)) else f"{rank}."
        details = " • ".join(part for part in (entry.category, entry.difficulty) if part)
        line = f"{marker} **{entry.username}**: {entry.score}"
        if details:
            line += f" ({details})"
        lines.append(line)
    embed.description = "\n".join(lines)
    return embed


class IntentButton(discord.ui.Button):
    """Button that forwards a session event to its channel session."""

    def __init__(self, channel_session: "ChannelSession", event: SessionEvent, payload=None, **kwargs):
        super().__init__(**kwargs)
        self.channel_session = channel_session
        self.event = event
        self.payload = payload

    async def callback(self, interaction: discord.Interaction):
        await self.channel_session.handle_intent(interaction, self.event, self.payload)


class SaveScoreButton(discord.ui.Button):
    """Opens the name prompt for saving a score."""

    def __init__(self, channel_session: "ChannelSession"):
        super().__init__(label="Save score", emoji="💾", style=discord.ButtonStyle.success)
        self.channel_session = channel_session

    async def callback(self, interaction: discord.Interaction):
        try:
            await interaction.response.send_modal(UsernameModal(self.channel_session))
        except discord.HTTPException as e:
            logger.error(f"Failed to open name prompt: {e}")


class UsernameModal(discord.ui.Modal, title="Save your score"):
    username = discord.ui.TextInput(
        label="Name",
        placeholder="Your name on the leaderboard",
        required=False,
        max_length=32
    )

    def __init__(self, channel_session: "ChannelSession"):
        super().__init__()
        self.channel_session = channel_session

    async def on_submit(self, interaction: discord.Interaction):
        await self.channel_session.handle_intent(interaction, SessionEvent.SAVE_SCORE, self.username.value)


class SessionView(discord.ui.View):
    """Buttons for the screen a session is currently on."""

    def __init__(self, channel_session: "ChannelSession"):
        super().__init__(timeout=None)
        self.channel_session = channel_session
        controller = channel_session.controller
        session = controller.session
        translator = channel_session.translator

        if session.loading:
            self._add(SessionEvent.RESET_TO_HOME, label="Home", emoji="🏠")
            return

        if session.state == GameState.HOME:
            self._add(SessionEvent.PLAY, label="Play", emoji="▶️", style=discord.ButtonStyle.primary)
            self._add(SessionEvent.VIEW_SCOREBOARD, label="Scoreboard", emoji="🏆")

        elif session.state == GameState.CATEGORY_SELECTION:
            for category_id in SELECTABLE_CATEGORIES:
                self._add(
                    SessionEvent.SELECT_CATEGORY,
                    category_id,
                    label=_truncate(_category_label(category_id, translator)),
                    style=discord.ButtonStyle.primary
                )
            self._add(SessionEvent.BACK, label="Back", emoji="⬅️", row=2)

        elif session.state == GameState.DIFFICULTY_SELECTION:
            for difficulty in DIFFICULTIES:
                self._add(
                    SessionEvent.SELECT_DIFFICULTY,
                    difficulty,
                    label=_difficulty_label(difficulty, translator),
                    style=discord.ButtonStyle.primary
                )
            self._add(SessionEvent.BACK, label="Back", emoji="⬅️", row=1)

        elif session.state == GameState.PLAYING:
            if session.error is not None:
                self._add(SessionEvent.RETRY, label="Retry", emoji="🔄", style=discord.ButtonStyle.primary)
            else:
                self._add_answer_buttons(session, controller.answer_options)
                self._add(
                    SessionEvent.NEXT_QUESTION,
                    label="Next",
                    emoji="➡️",
                    disabled=not session.answered,
                    row=4
                )
            self._add(SessionEvent.RESET_TO_HOME, label="Home", emoji="🏠", row=4)

        elif session.state == GameState.FINISHED:
            self.add_item(SaveScoreButton(channel_session))
            self._add(SessionEvent.PLAY_AGAIN, label="Play again", emoji="🔁")

        elif session.state == GameState.SCOREBOARD:
            self._add(SessionEvent.BACK, label="Back", emoji="⬅️")

    def _add(self, event: SessionEvent, payload=None, **kwargs) -> None:
        kwargs.setdefault("style", discord.ButtonStyle.secondary)
        self.add_item(IntentButton(self.channel_session, event, payload, **kwargs))

    def _add_answer_buttons(self, session: Session, options: List[str]) -> None:
        question = session.current_question
        for option in options:
            style = discord.ButtonStyle.primary
            if session.answered:
                if option == question.correct_answer:
                    style = discord.ButtonStyle.success
                elif option == session.selected_answer:
                    style = discord.ButtonStyle.danger
                else:
                    style = discord.ButtonStyle.secondary
            self._add(
                SessionEvent.SELECT_ANSWER,
                option,
                label=_truncate(option),
                style=style,
                disabled=session.answered
            )


class ChannelSession:
    """
    Binds one QuizController to the Discord message that displays it.

    Snapshot changes are coalesced: while a message edit is in flight,
    further changes only mark the view dirty and are rendered once the
    edit returns.
    """

    def __init__(
        self,
        channel_id: int,
        controller: QuizController,
        translator: Optional[TranslationAdapter] = None,
        top_scores_count: int = 3
    ):
        self.channel_id = channel_id
        self.controller = controller
        self.translator = translator
        self.top_scores_count = top_scores_count
        self.message: Optional[discord.Message] = None
        self._dirty = False
        self._render_task: Optional[asyncio.Task] = None
        self._unsubscribe = controller.subscribe(self._on_session_changed)

    def build_embed(self) -> discord.Embed:
        return build_session_embed(self.controller.session, self.translator, self.top_scores_count)

    def build_view(self) -> SessionView:
        return SessionView(self)

    async def open(self, interaction: discord.Interaction) -> None:
        """Post the session message in reply to a slash command."""
        await interaction.response.send_message(embed=self.build_embed(), view=self.build_view())
        self.message = await interaction.original_response()

    async def handle_intent(self, interaction: discord.Interaction, event: SessionEvent, payload=None) -> bool:
        """Acknowledge a component interaction and apply the event."""
        try:
            await interaction.response.defer()
        except discord.HTTPException as e:
            logger.error(f"Failed to acknowledge interaction in channel {self.channel_id}: {e}")

        accepted = self.controller.dispatch(event, payload)
        if not accepted:
            logger.debug(f"Event {event.value} not applied in channel {self.channel_id}")
        return accepted

    def _on_session_changed(self, session: Session) -> None:
        self._dirty = True
        if self.message is None:
            return
        if self._render_task is not None and not self._render_task.done():
            return
        try:
            self._render_task = asyncio.get_running_loop().create_task(self._render_loop())
        except RuntimeError:
            logger.debug(f"No running event loop, render skipped for channel {self.channel_id}")

    async def _render_loop(self) -> None:
        while self._dirty:
            self._dirty = False
            await self.render()

    async def render(self) -> None:
        """Edit the session message to show the current snapshot."""
        if self.message is None:
            return
        try:
            await self.message.edit(embed=self.build_embed(), view=self.build_view())
        except discord.HTTPException as e:
            logger.error(f"Failed to update quiz message in channel {self.channel_id}: {e}")

    def close(self) -> None:
        self._unsubscribe()
        self.controller.close()
        if self._render_task is not None and not self._render_task.done():
            self._render_task.cancel()


class QuizBot(commands.Bot):
    """Discord bot for playing trivia quizzes"""

    def __init__(self, config=None):
        # Set up intents - minimal intents for slash commands
        intents = discord.Intents.none()
        intents.guilds = True

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,  # Fallback prefix, mainly using slash commands
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}
        self.config_manager = ConfigManager()
        self.question_source: Optional[OpenTriviaClient] = None
        self.translator: Optional[TranslationAdapter] = None
        self.score_store: Optional[ScoreStore] = None
        # One engine for all channels; timers are keyed by channel id
        self.quiz_engine = QuizEngine()
        self.sessions: Dict[int, ChannelSession] = {}

    async def setup_hook(self):
        """Called when the bot is starting up"""
        try:
            logger.info("Setting up bot components...")

            if self.app_config:
                self.apply_configuration()

            self.build_collaborators()

            await self.prepare_translator()

            await self.setup_commands()

            logger.info("Bot setup completed successfully")

        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            raise

    def apply_configuration(self):
        """Apply settings from configuration file to the config manager."""
        result = self.config_manager.load_from_dict(self.app_config)
        for error in result['errors']:
            logger.warning(f"Ignoring invalid configuration value: {error}")

    def build_collaborators(self):
        """Create the question source, translator and score store from settings."""
        settings = self.config_manager.get_quiz_settings()
        self.question_source = OpenTriviaClient(settings.api_base_url, settings.request_timeout)
        self.translator = TranslationAdapter(settings.target_language, settings.translation_enabled)
        self.score_store = ScoreStore(settings.score_file)

    async def prepare_translator(self):
        """Probe the translation service once; offline mode is used if it fails or hangs."""
        timeout = self.config_manager.get_quiz_settings().translation_timeout
        try:
            await asyncio.wait_for(asyncio.to_thread(self.translator.prepare), timeout)
        except asyncio.TimeoutError:
            self.translator.offline = True
            logger.warning(f"Translation service did not answer within {timeout}s, using offline mode")

    def create_session(self, channel_id: int) -> ChannelSession:
        """Create a fresh session for a channel, closing any previous one."""
        previous = self.sessions.pop(channel_id, None)
        if previous is not None:
            previous.close()

        settings = self.config_manager.get_quiz_settings()
        controller = QuizController(
            self.question_source,
            self.translator,
            self.score_store,
            settings=settings,
            session_key=str(channel_id),
            quiz_engine=self.quiz_engine
        )
        channel_session = ChannelSession(channel_id, controller, self.translator, settings.top_scores_count)
        self.sessions[channel_id] = channel_session
        return channel_session

    async def setup_commands(self):
        """Register all slash commands"""
        try:
            @self.tree.command(name="help", description="Display available commands and their descriptions")
            async def help_command(interaction: discord.Interaction):
                await self.handle_help(interaction)

            @self.tree.command(name="quiz", description="Open a trivia quiz in this channel")
            async def quiz_command(interaction: discord.Interaction):
                await self.handle_quiz(interaction)

            @self.tree.command(name="scores", description="Show the best saved scores")
            async def scores_command(interaction: discord.Interaction):
                await self.handle_scores(interaction)

            @self.tree.command(name="reset", description="Return this channel's quiz to the home screen")
            async def reset_command(interaction: discord.Interaction):
                await self.handle_reset(interaction)

            @self.tree.command(name="set_timer", description="Set the timer duration for each question (5-300 seconds)")
            async def set_timer_command(interaction: discord.Interaction, seconds: int):
                await self.handle_set_timer(interaction, seconds)

            @self.tree.command(name="set_questions", description="Set the number of questions per quiz (1-50)")
            async def set_questions_command(interaction: discord.Interaction, number: int):
                await self.handle_set_questions(interaction, number)

            logger.info("Slash commands registered successfully")

        except Exception as e:
            logger.error(f"Error setting up commands: {e}")
            raise

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guilds")

        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        for channel_session in list(self.sessions.values()):
            channel_session.close()
        self.sessions.clear()
        cancelled = self.quiz_engine.cancel_all()
        if cancelled:
            logger.info(f"Cancelled {cancelled} question timers on shutdown")
        if self.translator is not None:
            self.translator.close()
        await super().close()

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        try:
            help_embed = discord.Embed(
                title="🎯 Trivia Quiz Commands",
                description="Play a timed trivia quiz with buttons",
                color=COLOR_OK
            )
            help_embed.add_field(
                name="🎮 Play",
                value=(
                    "`/quiz` - Open a quiz in this channel\n"
                    "`/reset` - Return the quiz to the home screen\n"
                    "`/scores` - Show the best saved scores"
                ),
                inline=False
            )
            help_embed.add_field(
                name="📋 Settings",
                value=(
                    "`/set_timer <seconds>` - Time to answer each question (5-300)\n"
                    "`/set_questions <number>` - Questions per quiz (1-50)"
                ),
                inline=False
            )
            help_embed.add_field(
                name="⚙️ Current Settings",
                value=f"```\n{self.config_manager.get_settings_summary()}\n```",
                inline=False
            )
            help_embed.set_footer(text="New settings apply to the next /quiz")

            await interaction.response.send_message(embed=help_embed)

        except discord.HTTPException as e:
            logger.error(f"Error in help command: {e}")
            await self.send_error_response(interaction, "Failed to display help", "❌ Help Error")

    async def handle_quiz(self, interaction: discord.Interaction):
        """Handle /quiz command"""
        channel_session = self.create_session(interaction.channel_id)
        try:
            await channel_session.open(interaction)
            logger.info(f"Opened quiz session in channel {interaction.channel_id}")
        except discord.HTTPException as e:
            logger.error(f"Failed to open quiz in channel {interaction.channel_id}: {e}")
            await self.send_error_response(interaction, "Failed to open the quiz", "❌ Quiz Error")

    async def handle_scores(self, interaction: discord.Interaction):
        """Handle /scores command"""
        settings = self.config_manager.get_quiz_settings()
        top = self.score_store.top_n(settings.top_scores_count)
        embed = _build_scoreboard_embed(Session(scores=tuple(top)), settings.top_scores_count)

        if self.score_store.has_load_errors():
            embed.set_footer(text="⚠️ The score file could not be read completely")

        try:
            await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Error in scores command: {e}")

    async def handle_reset(self, interaction: discord.Interaction):
        """Handle /reset command"""
        channel_session = self.sessions.get(interaction.channel_id)
        if channel_session is None:
            await self.send_info_response(interaction, "There is no quiz in this channel. Use `/quiz` to open one.")
            return

        channel_session.controller.reset_to_home()
        await self.send_info_response(interaction, "The quiz is back on the home screen.", "🏠 Reset")

    async def handle_set_timer(self, interaction: discord.Interaction, seconds: int):
        """Handle /set_timer command"""
        result = self.config_manager.set_timer_duration(seconds)
        await self._send_setting_result(interaction, result, "✅ Timer Duration Updated")

    async def handle_set_questions(self, interaction: discord.Interaction, number: int):
        """Handle /set_questions command"""
        result = self.config_manager.set_batch_size(number)
        await self._send_setting_result(interaction, result, "✅ Question Count Updated")

    async def _send_setting_result(self, interaction: discord.Interaction, result: dict, title: str):
        if not result['success']:
            await self.send_error_response(interaction, result['user_message'], "❌ Configuration Error")
            return

        embed = discord.Embed(title=title, description=result['user_message'], color=COLOR_OK)
        embed.add_field(
            name="⚙️ Current Settings",
            value=f"```\n{self.config_manager.get_settings_summary()}\n```",
            inline=False
        )
        try:
            await interaction.response.send_message(embed=embed)
        except discord.HTTPException as e:
            logger.error(f"Failed to confirm setting change: {e}")

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        try:
            embed = discord.Embed(
                title=title,
                description=message,
                color=COLOR_ERROR
            )
            embed.set_footer(text="If this error persists, try using /help for available commands")

            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error("Failed to send error response to user")

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        """Send formatted info response to user"""
        try:
            embed = discord.Embed(
                title=title,
                description=message,
                color=COLOR_INFO
            )

            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error("Failed to send info response to user")


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    # Fall back to environment variable if no token provided
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = QuizBot(config)

    try:
        logger.info("Starting Discord Trivia Quiz Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
