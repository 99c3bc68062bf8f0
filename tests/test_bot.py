"""
Unit tests for the Discord presentation of quiz sessions.
"""
import unittest
import asyncio
import logging
import tempfile
import time
from pathlib import Path
from unittest.mock import Mock, AsyncMock, patch

import discord
from discord.ext import commands

from trivia_quiz.bot import (
    ChannelSession, QuizBot, SaveScoreButton, SessionView, UsernameModal, build_session_embed,
)
from trivia_quiz.models import GameState, ScoreEntry, Session
from trivia_quiz.quiz_controller import QuizController, SessionEvent
from trivia_quiz.score_store import ScoreStore
from tests.test_fixtures import (
    AsyncTestHelpers, ErrorScenarios, FakeQuestionSource, MockDiscordObjects, TestFixtures,
)


def async_test(coro):
    """Decorator to run async test methods."""
    def wrapper(self):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(coro(self))
        finally:
            loop.close()
    return wrapper


def field_names(embed: discord.Embed):
    return [field.name for field in embed.fields]


class TestSessionEmbed(unittest.TestCase):
    """Embeds rendered for each session snapshot."""

    def setUp(self):
        self.questions = tuple(TestFixtures.create_sample_questions(10))

    def test_home(self):
        embed = build_session_embed(Session())
        self.assertIn("Trivia Quiz", embed.title)

    def test_difficulty_selection_shows_category(self):
        embed = build_session_embed(Session(state=GameState.DIFFICULTY_SELECTION, selected_category=18))
        self.assertIn("Computers", embed.description)

    def test_loading_overlay(self):
        embed = build_session_embed(Session(state=GameState.PLAYING, loading=True))
        self.assertIn("Loading", embed.title)

    def test_error_overlay(self):
        embed = build_session_embed(Session(state=GameState.PLAYING, error="Error: Network error"))
        self.assertEqual(embed.description, "Error: Network error")
        self.assertIn("Retry", embed.footer.text)

    def test_question(self):
        session = Session(state=GameState.PLAYING, questions=self.questions, current_index=2,
                          score=1, time_remaining=12)
        embed = build_session_embed(session)

        self.assertEqual(embed.title, "🎯 Question 3/10")
        self.assertEqual(embed.description, "Question 3?")
        self.assertEqual(embed.fields[0].value, "12 seconds")
        self.assertEqual(embed.fields[1].value, "1")
        self.assertEqual(embed.color.value, 0x00ff00)

    def test_question_color_follows_remaining_time(self):
        for remaining, color in ((4, 0xff6600), (1, 0xff0000)):
            with self.subTest(remaining=remaining):
                session = Session(state=GameState.PLAYING, questions=self.questions, time_remaining=remaining)
                self.assertEqual(build_session_embed(session).color.value, color)

    def test_revealed_answers(self):
        base = dict(state=GameState.PLAYING, questions=self.questions, answered=True)

        correct = build_session_embed(Session(selected_answer="Right 1", **base))
        wrong = build_session_embed(Session(selected_answer="Wrong 1a", **base))
        timed_out = build_session_embed(Session(timed_out=True, time_remaining=0, **base))

        self.assertIn("✅ Correct!", field_names(correct))
        self.assertIn("❌ Wrong answer", field_names(wrong))
        self.assertIn("⏰ Time's up!", field_names(timed_out))
        self.assertIn("Right 1", timed_out.fields[-1].value)

    def test_finished_with_validation_error(self):
        session = Session(state=GameState.FINISHED, questions=self.questions, score=6,
                          validation_error="Please enter a name")
        embed = build_session_embed(session)

        self.assertIn("6/10", embed.description)
        self.assertIn("⚠️ Name required", field_names(embed))

    def test_scoreboard(self):
        scores = tuple(ScoreEntry(f"P{i}", 10 - i, "Films", "Facile") for i in range(5))
        embed = build_session_embed(Session(state=GameState.SCOREBOARD, scores=scores), top_scores_count=3)
        lines = embed.description.split("\n")

        self.assertEqual(len(lines), 5)
        self.assertTrue(lines[0].startswith("🥇 **P0**: 10"))
        self.assertTrue(lines[2].startswith("🥉"))
        self.assertTrue(lines[3].startswith("4."))
        self.assertIn("Films • Facile", lines[0])

    def test_empty_scoreboard(self):
        embed = build_session_embed(Session(state=GameState.SCOREBOARD))
        self.assertEqual(embed.description, "No scores saved yet.")


class ChannelSessionTestCase(unittest.TestCase):

    def setUp(self):
        logging.disable(logging.CRITICAL)
        self.temp_dir = tempfile.TemporaryDirectory()
        self.store = ScoreStore(str(Path(self.temp_dir.name) / "scores.json"))
        self.source = FakeQuestionSource(TestFixtures.create_success_batch(10))

    def tearDown(self):
        self.temp_dir.cleanup()
        logging.disable(logging.NOTSET)

    def make_session(self) -> ChannelSession:
        controller = QuizController(
            self.source, None, self.store,
            settings=TestFixtures.create_manual_settings(),
            session_key="12345"
        )
        return ChannelSession(12345, controller)


class TestSessionView(ChannelSessionTestCase):
    """Buttons offered on each screen."""

    def labels(self, channel_session):
        return [item.label for item in SessionView(channel_session).children]

    @async_test
    async def test_navigation_screens(self):
        channel_session = self.make_session()
        controller = channel_session.controller

        self.assertEqual(self.labels(channel_session), ["Play", "Scoreboard"])

        controller.play()
        labels = self.labels(channel_session)
        self.assertEqual(len(labels), 9)
        self.assertEqual(labels[0], "General Knowledge")
        self.assertEqual(labels[-1], "Back")

        controller.select_category(9)
        self.assertEqual(self.labels(channel_session), ["Easy", "Medium", "Hard", "Back"])

    @async_test
    async def test_question_screen(self):
        channel_session = self.make_session()
        controller = channel_session.controller
        await controller.start_quiz(9, "easy")

        view = SessionView(channel_session)
        answers = [item for item in view.children if item.event == SessionEvent.SELECT_ANSWER]
        next_button = [item for item in view.children if item.event == SessionEvent.NEXT_QUESTION][0]

        self.assertEqual(sorted(item.payload for item in answers), sorted(controller.answer_options))
        self.assertTrue(next_button.disabled)
        self.assertFalse(any(item.disabled for item in answers))

        controller.select_answer("Wrong 1a")
        view = SessionView(channel_session)
        styles = {item.payload: item.style for item in view.children if item.event == SessionEvent.SELECT_ANSWER}

        self.assertEqual(styles["Right 1"], discord.ButtonStyle.success)
        self.assertEqual(styles["Wrong 1a"], discord.ButtonStyle.danger)
        self.assertEqual(styles["Wrong 1b"], discord.ButtonStyle.secondary)
        await AsyncTestHelpers.shutdown(controller)

    @async_test
    async def test_loading_and_error_screens(self):
        self.source.gate = asyncio.Event()
        self.source.results = [ErrorScenarios.get_question_source_errors()[0]]
        channel_session = self.make_session()
        controller = channel_session.controller
        controller.play()
        controller.select_category(9)
        controller.select_difficulty("easy")

        self.assertEqual(self.labels(channel_session), ["Home"])

        self.source.gate.set()
        await controller.wait_for_pending()
        self.assertEqual(self.labels(channel_session), ["Retry", "Home"])

    @async_test
    async def test_finished_and_scoreboard_screens(self):
        channel_session = self.make_session()
        controller = channel_session.controller
        controller._set_session(Session(state=GameState.FINISHED))

        view = SessionView(channel_session)
        self.assertIsInstance(view.children[0], SaveScoreButton)
        self.assertEqual(view.children[1].label, "Play again")

        controller._set_session(Session(state=GameState.SCOREBOARD))
        self.assertEqual(self.labels(channel_session), ["Back"])


class TestChannelSession(ChannelSessionTestCase):
    """Interaction handling and message updates."""

    @async_test
    async def test_open_posts_message(self):
        channel_session = self.make_session()
        interaction = MockDiscordObjects.create_mock_interaction()

        await channel_session.open(interaction)

        interaction.response.send_message.assert_awaited_once()
        kwargs = interaction.response.send_message.call_args.kwargs
        self.assertIsInstance(kwargs['embed'], discord.Embed)
        self.assertIsInstance(kwargs['view'], SessionView)
        self.assertIsNotNone(channel_session.message)

    @async_test
    async def test_intent_defers_and_dispatches(self):
        channel_session = self.make_session()
        interaction = MockDiscordObjects.create_mock_interaction()

        accepted = await channel_session.handle_intent(interaction, SessionEvent.PLAY)

        self.assertTrue(accepted)
        interaction.response.defer.assert_awaited_once()
        self.assertEqual(channel_session.controller.session.state, GameState.CATEGORY_SELECTION)

    @async_test
    async def test_button_callback_forwards_event(self):
        channel_session = self.make_session()
        interaction = MockDiscordObjects.create_mock_interaction()
        button = SessionView(channel_session).children[0]

        await button.callback(interaction)

        self.assertEqual(channel_session.controller.session.state, GameState.CATEGORY_SELECTION)

    @async_test
    async def test_rejected_intent(self):
        channel_session = self.make_session()
        interaction = MockDiscordObjects.create_mock_interaction()

        self.assertFalse(await channel_session.handle_intent(interaction, SessionEvent.BACK))
        self.assertEqual(channel_session.controller.session.state, GameState.HOME)

    @async_test
    async def test_session_changes_edit_message(self):
        channel_session = self.make_session()
        interaction = MockDiscordObjects.create_mock_interaction()
        await channel_session.open(interaction)
        message = channel_session.message

        channel_session.controller.play()
        channel_session.controller.select_category(9)
        await AsyncTestHelpers.wait_until(lambda: message.edit.await_count >= 1)
        await asyncio.sleep(0.01)

        # both changes are shown, the second may be folded into one edit
        last_embed = message.edit.call_args.kwargs['embed']
        self.assertIn("difficulty", last_embed.title)
        self.assertLessEqual(message.edit.await_count, 2)

    @async_test
    async def test_render_error_is_logged_not_raised(self):
        channel_session = self.make_session()
        channel_session.message = MockDiscordObjects.create_mock_message()
        channel_session.message.edit.side_effect = ErrorScenarios.get_discord_api_errors()[0]

        await channel_session.render()

        channel_session.message.edit.assert_awaited_once()

    @async_test
    async def test_save_score_button_opens_modal(self):
        channel_session = self.make_session()
        interaction = MockDiscordObjects.create_mock_interaction()

        await SaveScoreButton(channel_session).callback(interaction)

        interaction.response.send_modal.assert_awaited_once()
        self.assertIsInstance(interaction.response.send_modal.call_args.args[0], UsernameModal)

    @async_test
    async def test_save_score_intent(self):
        channel_session = self.make_session()
        controller = channel_session.controller
        controller._set_session(Session(state=GameState.FINISHED, score=4, selected_category=9,
                                        selected_difficulty="easy"))

        await channel_session.handle_intent(MockDiscordObjects.create_mock_interaction(),
                                            SessionEvent.SAVE_SCORE, "Alice")

        self.assertEqual(controller.session.state, GameState.SCOREBOARD)
        self.assertEqual([s.username for s in self.store.list_all()], ["Alice"])

    @async_test
    async def test_close_unsubscribes(self):
        channel_session = self.make_session()
        channel_session.message = MockDiscordObjects.create_mock_message()

        channel_session.close()
        channel_session.controller.play()
        await asyncio.sleep(0.01)

        channel_session.message.edit.assert_not_awaited()


class TestQuizBot(unittest.TestCase):
    """Slash command handlers."""

    def setUp(self):
        logging.disable(logging.CRITICAL)
        self.temp_dir = tempfile.TemporaryDirectory()
        self.score_file = str(Path(self.temp_dir.name) / "scores.json")
        self.config = {
            "quiz": {"timer_duration": 20},
            "scores": {"score_file": self.score_file, "top_scores_count": 2},
            "translation": {"enabled": False}
        }

    def tearDown(self):
        self.temp_dir.cleanup()
        logging.disable(logging.NOTSET)

    def make_bot(self) -> QuizBot:
        bot = QuizBot(self.config)
        bot.apply_configuration()
        bot.build_collaborators()
        bot.question_source = FakeQuestionSource(TestFixtures.create_success_batch(10))
        return bot

    @async_test
    async def test_configuration_is_applied(self):
        bot = self.make_bot()
        settings = bot.config_manager.get_quiz_settings()

        self.assertEqual(settings.timer_duration, 20)
        self.assertEqual(bot.score_store.score_file, Path(self.score_file))
        self.assertFalse(bot.translator.enabled)

    @async_test
    async def test_quiz_command_opens_session(self):
        bot = self.make_bot()
        interaction = MockDiscordObjects.create_mock_interaction(channel_id=42)

        await bot.handle_quiz(interaction)

        self.assertIn(42, bot.sessions)
        self.assertEqual(bot.sessions[42].controller.settings.timer_duration, 20)
        interaction.response.send_message.assert_awaited_once()

    @async_test
    async def test_quiz_command_replaces_previous_session(self):
        bot = self.make_bot()
        await bot.handle_quiz(MockDiscordObjects.create_mock_interaction(channel_id=42))
        first = bot.sessions[42]
        first.controller.play()

        await bot.handle_quiz(MockDiscordObjects.create_mock_interaction(channel_id=42))

        self.assertIsNot(bot.sessions[42], first)
        self.assertEqual(bot.sessions[42].controller.session.state, GameState.HOME)

    @async_test
    async def test_reset_command(self):
        bot = self.make_bot()
        await bot.handle_quiz(MockDiscordObjects.create_mock_interaction(channel_id=42))
        bot.sessions[42].controller.play()

        interaction = MockDiscordObjects.create_mock_interaction(channel_id=42)
        await bot.handle_reset(interaction)

        self.assertEqual(bot.sessions[42].controller.session.state, GameState.HOME)
        interaction.response.send_message.assert_awaited_once()

    @async_test
    async def test_reset_command_without_session(self):
        bot = self.make_bot()
        interaction = MockDiscordObjects.create_mock_interaction(channel_id=7)

        await bot.handle_reset(interaction)

        embed = interaction.response.send_message.call_args.kwargs['embed']
        self.assertIn("/quiz", embed.description)

    @async_test
    async def test_scores_command_shows_top_scores(self):
        bot = self.make_bot()
        for name, score in (("A", 3), ("B", 8), ("C", 5)):
            bot.score_store.append(ScoreEntry(name, score))
        interaction = MockDiscordObjects.create_mock_interaction()

        await bot.handle_scores(interaction)

        embed = interaction.response.send_message.call_args.kwargs['embed']
        self.assertEqual(len(embed.description.split("\n")), 2)
        self.assertIn("**B**: 8", embed.description)

    @async_test
    async def test_set_timer_command(self):
        bot = self.make_bot()
        interaction = MockDiscordObjects.create_mock_interaction()

        await bot.handle_set_timer(interaction, 45)

        self.assertEqual(bot.config_manager.get_quiz_settings().timer_duration, 45)
        interaction.response.send_message.assert_awaited_once()

    @async_test
    async def test_set_timer_command_validation_error(self):
        bot = self.make_bot()
        interaction = MockDiscordObjects.create_mock_interaction()

        await bot.handle_set_timer(interaction, 1)

        self.assertEqual(bot.config_manager.get_quiz_settings().timer_duration, 20)
        self.assertTrue(interaction.response.send_message.call_args.kwargs['ephemeral'])

    @async_test
    async def test_set_questions_command(self):
        bot = self.make_bot()
        interaction = MockDiscordObjects.create_mock_interaction()

        await bot.handle_set_questions(interaction, 5)

        self.assertEqual(bot.config_manager.get_quiz_settings().batch_size, 5)

    @async_test
    async def test_help_command(self):
        bot = self.make_bot()
        interaction = MockDiscordObjects.create_mock_interaction()

        await bot.handle_help(interaction)

        embed = interaction.response.send_message.call_args.kwargs['embed']
        self.assertIn("Timer: 20 seconds", embed.fields[-1].value)

    @async_test
    async def test_error_response_uses_followup_when_done(self):
        bot = self.make_bot()
        interaction = MockDiscordObjects.create_mock_interaction()
        interaction.response.is_done.return_value = True

        await bot.send_error_response(interaction, "Something failed")

        interaction.followup.send.assert_awaited_once()
        interaction.response.send_message.assert_not_awaited()

    @async_test
    async def test_sessions_share_the_bot_engine(self):
        bot = self.make_bot()
        await bot.handle_quiz(MockDiscordObjects.create_mock_interaction(channel_id=1))
        await bot.handle_quiz(MockDiscordObjects.create_mock_interaction(channel_id=2))

        self.assertIs(bot.sessions[1].controller.quiz_engine, bot.quiz_engine)
        self.assertIs(bot.sessions[2].controller.quiz_engine, bot.quiz_engine)

    @async_test
    async def test_close_cancels_running_timers(self):
        bot = self.make_bot()
        timer = bot.quiz_engine.start_question_timer("orphan", 15, 60.0, lambda r: None, Mock())

        with patch.object(commands.Bot, 'close', new_callable=AsyncMock) as bot_close:
            await bot.close()

        self.assertTrue(timer.is_cancelled)
        self.assertIsNone(bot.quiz_engine.get_timer_status("orphan"))
        self.assertEqual(bot.sessions, {})
        bot_close.assert_awaited_once()
        await asyncio.sleep(0)

    @async_test
    async def test_hanging_translation_probe_switches_to_offline(self):
        bot = self.make_bot()
        bot.config_manager._settings.translation_timeout = 0.05
        bot.translator = Mock()
        bot.translator.prepare.side_effect = lambda: time.sleep(0.3)

        await AsyncTestHelpers.run_with_timeout(bot.prepare_translator(), timeout=0.25)

        self.assertTrue(bot.translator.offline)

    @async_test
    async def test_setup_commands_registers_slash_commands(self):
        bot = self.make_bot()

        await bot.setup_commands()

        names = {command.name for command in bot.tree.get_commands()}
        self.assertEqual(names, {"help", "quiz", "scores", "reset", "set_timer", "set_questions"})


if __name__ == '__main__':
    unittest.main()
