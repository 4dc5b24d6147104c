"""
Configuration wizard for Telegram bot commands.

This module processes the bot's commands and walks users through a linear
set of questions (geography, listing types, USD range, skills) before
saving their notification preferences in one step.
"""

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional

from ..interfaces import IPreferenceStore
from ..models.telegram import BotCommand, CommandResult
from ..models.user import UserPreferences
from ..utils.logging import get_logger

logger = get_logger("telegram.bot")

AVAILABLE_SKILLS = sorted(
    [
        "typescript", "javascript", "python", "rust", "solana", "react", "vue",
        "angular", "nodejs", "go", "java", "swift", "kotlin", "smart-contracts",
        "defi", "nft", "ui-ux", "graphic-design", "content-writing", "marketing",
        "social-media", "community-management", "devops", "telegram-api",
        "vietnamese",
    ]
)

SKIP_WORDS = {"skip"}
ANY_WORDS = {"any", "skip"}

TYPE_CALLBACK_PREFIX = "config_type_"
CONFIRM_YES = "config_confirm_yes"
CONFIRM_NO = "config_confirm_no"

WELCOME_TEXT = """👋 Welcome to the Superteam Earn Notification Bot!

I'll help you stay updated with the latest bounties and projects from Superteam Earn.

Here are some commands you can use:
/configure - Set up your notification preferences (USD value, type, skills).
/myconfig - View your current notification preferences.
/help - Show the help message.

To get started, please use /configure to set your preferences."""

HELP_TEXT = """Superteam Earn Notification Bot Help:

/start - Welcome message and basic bot information.
/configure - Set or update your notification preferences. This includes:
    - Minimum and Maximum USD value for listings.
    - Whether to receive notifications for Bounties, Projects, or both.
    - Specific skills you are interested in.
    - Your primary geography (e.g., Vietnam, India, Global).
/myconfig - Display your current notification settings.
/cancel - Stop an unfinished /configure session.
/help - Show this help message.

Notifications for new listings are sent approximately 12 hours after they are published on Superteam Earn, matching your configured preferences."""

SESSION_EXPIRED_TEXT = (
    "Configuration session expired or invalid. Please start over with /configure."
)


class WizardStep(Enum):
    """Questions asked by the wizard, in order."""

    GEOGRAPHY = "geography"
    LISTING_TYPE = "listing_type"
    MIN_USD = "min_usd"
    MAX_USD = "max_usd"
    SKILLS = "skills"
    CONFIRM = "confirm"


@dataclass
class WizardSession:
    """Answers collected so far for one chat."""

    step: WizardStep
    draft: UserPreferences


def _format_usd(value: Optional[float], unset: str) -> str:
    if value is None:
        return unset
    return f"${int(value)}" if float(value).is_integer() else f"${value:.2f}"


def describe_preferences(prefs: UserPreferences) -> str:
    """Human-readable summary of a preference set."""
    skills = ", ".join(prefs.skills) if prefs.skills else "Any"
    return "\n".join(
        [
            f"- Geography: {prefs.geography or 'Global'}",
            f"- Bounties: {'Yes' if prefs.notify_for_bounties is not False else 'No'}",
            f"- Projects: {'Yes' if prefs.notify_for_projects is not False else 'No'}",
            f"- Min USD: {_format_usd(prefs.min_usd_value, 'Any')}",
            f"- Max USD: {_format_usd(prefs.max_usd_value, 'Any')}",
            f"- Skills: {skills}",
        ]
    )


def parse_usd_answer(text: str) -> Optional[float]:
    """
    Parse a USD amount typed by the user; ``0`` means no limit.

    Raises:
        ValueError: If the text is not a non-negative number
    """
    value = float(text.replace(",", "").replace("$", "").strip())
    if math.isnan(value) or math.isinf(value) or value < 0:
        raise ValueError(f"not a non-negative amount: {text}")
    return None if value == 0 else value


class ConfigurationWizard:
    """Handles bot commands and the multi-step /configure conversation."""

    def __init__(
        self,
        preference_store: IPreferenceStore,
        available_skills: Optional[List[str]] = None,
    ):
        """
        Initialize the wizard.

        Args:
            preference_store: Store receiving the saved preferences
            available_skills: Skill tags users may pick from
        """
        self.preference_store = preference_store
        self.available_skills = available_skills or AVAILABLE_SKILLS
        self._sessions: Dict[int, WizardSession] = {}

    def is_configuring(self, chat_id: int) -> bool:
        return chat_id in self._sessions

    async def process_command(self, command: BotCommand) -> CommandResult:
        """
        Route a command to its handler.

        Args:
            command: Bot command to process

        Returns:
            CommandResult with the reply for the chat
        """
        if not command.validate():
            return CommandResult(success=False, message=f"Unknown command: /{command.command}")

        handlers = {
            "start": self._start,
            "help": self._help,
            "configure": self._configure,
            "myconfig": self._my_config,
            "cancel": self._cancel,
        }
        result = handlers[command.command](command.chat_id)

        logger.info(
            f"Command executed: {command.command}",
            extra={"chat_id": command.chat_id, "success": result.success},
        )
        return result

    async def handle_text(self, chat_id: int, text: str) -> Optional[CommandResult]:
        """Process a free-text answer; returns None if no wizard is running."""
        session = self._sessions.get(chat_id)
        if session is None:
            return None

        answer = text.strip()
        handlers = {
            WizardStep.GEOGRAPHY: self._answer_geography,
            WizardStep.MIN_USD: self._answer_min_usd,
            WizardStep.MAX_USD: self._answer_max_usd,
            WizardStep.SKILLS: self._answer_skills,
        }
        handler = handlers.get(session.step)
        if handler is None:
            return CommandResult(
                success=False, message="Please use the buttons above to continue."
            )
        return handler(session, answer)

    async def handle_callback(self, chat_id: int, data: str) -> CommandResult:
        """Process an inline keyboard button press."""
        session = self._sessions.get(chat_id)
        if session is None:
            return CommandResult(success=False, message=SESSION_EXPIRED_TEXT)

        if data.startswith(TYPE_CALLBACK_PREFIX) and session.step == WizardStep.LISTING_TYPE:
            return self._answer_listing_type(session, data[len(TYPE_CALLBACK_PREFIX):])

        if data == CONFIRM_YES and session.step == WizardStep.CONFIRM:
            return self._save(chat_id, session)

        if data == CONFIRM_NO and session.step == WizardStep.CONFIRM:
            del self._sessions[chat_id]
            restarted = self._configure(chat_id)
            return replace(
                restarted, edit_text="Configuration cancelled. Let's start over."
            )

        return CommandResult(success=False, message="That button is no longer active.")

    def _start(self, chat_id: int) -> CommandResult:
        user = self.preference_store.get_or_create_user(chat_id)
        if not user.is_active:
            self.preference_store.reactivate_user(chat_id)
        return CommandResult(success=True, message=WELCOME_TEXT)

    def _help(self, chat_id: int) -> CommandResult:
        return CommandResult(success=True, message=HELP_TEXT)

    def _configure(self, chat_id: int) -> CommandResult:
        user = self.preference_store.get_or_create_user(chat_id)
        session = WizardSession(
            step=WizardStep.GEOGRAPHY,
            draft=replace(user.preferences, skills=list(user.preferences.skills)),
        )
        self._sessions[chat_id] = session
        return CommandResult(
            success=True,
            message="Let's configure your notification preferences!\n\n"
            + self._geography_question(session),
        )

    def _my_config(self, chat_id: int) -> CommandResult:
        user = self.preference_store.get_user(chat_id)
        if user is None or not user.is_configured:
            return CommandResult(
                success=False,
                message="You haven't configured your preferences yet. "
                "Use /configure to set them up.",
            )
        return CommandResult(
            success=True,
            message="Your current configuration:\n" + describe_preferences(user.preferences),
        )

    def _cancel(self, chat_id: int) -> CommandResult:
        if self._sessions.pop(chat_id, None) is None:
            return CommandResult(success=False, message="There is nothing to cancel.")
        return CommandResult(
            success=True,
            message="Configuration cancelled. Your saved preferences were not changed.",
        )

    def _geography_question(self, session: WizardSession) -> str:
        session.step = WizardStep.GEOGRAPHY
        return (
            "What is your primary geography for opportunities? "
            "(e.g., Vietnam, Global, etc.). Type one or 'skip'. "
            f"Current: {session.draft.geography or 'Global'}"
        )

    def _listing_type_question(self, session: WizardSession) -> CommandResult:
        session.step = WizardStep.LISTING_TYPE
        return CommandResult(
            success=True,
            message="Do you want notifications for Bounties, Projects, or Both?",
            buttons=[
                [("Bounties Only", f"{TYPE_CALLBACK_PREFIX}bounties")],
                [("Projects Only", f"{TYPE_CALLBACK_PREFIX}projects")],
                [("Both", f"{TYPE_CALLBACK_PREFIX}both")],
                [("Skip", f"{TYPE_CALLBACK_PREFIX}skip")],
            ],
        )

    def _min_usd_question(self, session: WizardSession) -> str:
        session.step = WizardStep.MIN_USD
        return (
            "Enter minimum USD value for listings (e.g., 100). "
            "Type '0' for no minimum, or 'skip'. "
            f"Current: {_format_usd(session.draft.min_usd_value, 'Not set')}"
        )

    def _max_usd_question(self, session: WizardSession) -> str:
        session.step = WizardStep.MAX_USD
        return (
            "Enter maximum USD value for listings (e.g., 5000). "
            "Type '0' for no maximum, or 'skip'. "
            f"Current: {_format_usd(session.draft.max_usd_value, 'Not set')}"
        )

    def _skills_question(self, session: WizardSession) -> str:
        session.step = WizardStep.SKILLS
        current = ", ".join(session.draft.skills) if session.draft.skills else "Any"
        return (
            "Enter skills you're interested in, separated by commas "
            "(e.g., typescript,rust,marketing). Type 'any' or 'skip' to not filter "
            f"by skills. Current: {current}\n"
            f"Available: {', '.join(self.available_skills)}"
        )

    def _confirm_question(self, session: WizardSession) -> CommandResult:
        session.step = WizardStep.CONFIRM
        return CommandResult(
            success=True,
            message="Please confirm your preferences:\n"
            + describe_preferences(session.draft)
            + "\n\nIs this correct?",
            buttons=[
                [("✅ Yes, Save", CONFIRM_YES)],
                [("❌ No, Restart", CONFIRM_NO)],
            ],
        )

    def _answer_geography(self, session: WizardSession, answer: str) -> CommandResult:
        if answer and answer.lower() not in SKIP_WORDS:
            session.draft.geography = answer
        return self._listing_type_question(session)

    def _answer_listing_type(self, session: WizardSession, choice: str) -> CommandResult:
        if choice == "bounties":
            session.draft.notify_for_bounties, session.draft.notify_for_projects = True, False
        elif choice == "projects":
            session.draft.notify_for_bounties, session.draft.notify_for_projects = False, True
        elif choice == "both":
            session.draft.notify_for_bounties, session.draft.notify_for_projects = True, True
        elif choice == "skip":
            if session.draft.notify_for_bounties is None:
                session.draft.notify_for_bounties = True
            if session.draft.notify_for_projects is None:
                session.draft.notify_for_projects = True
        else:
            return CommandResult(success=False, message="That button is no longer active.")

        return CommandResult(
            success=True,
            message=self._min_usd_question(session),
            edit_text=f"Selected: {choice}",
        )

    def _answer_min_usd(self, session: WizardSession, answer: str) -> CommandResult:
        if answer.lower() in SKIP_WORDS:
            session.draft.min_usd_value = None
        else:
            try:
                session.draft.min_usd_value = parse_usd_answer(answer)
            except ValueError:
                return CommandResult(
                    success=False,
                    message="Invalid input. Please enter a number (e.g., 100) or 'skip'.\n\n"
                    + self._min_usd_question(session),
                )
        return CommandResult(success=True, message=self._max_usd_question(session))

    def _answer_max_usd(self, session: WizardSession, answer: str) -> CommandResult:
        if answer.lower() in SKIP_WORDS:
            session.draft.max_usd_value = None
        else:
            try:
                max_value = parse_usd_answer(answer)
            except ValueError:
                return CommandResult(
                    success=False,
                    message="Invalid input. Please enter a number (e.g., 5000) or 'skip'.\n\n"
                    + self._max_usd_question(session),
                )

            min_value = session.draft.min_usd_value
            if max_value is not None and min_value is not None and max_value < min_value:
                return CommandResult(
                    success=False,
                    message="Max USD value cannot be less than Min USD value. "
                    "Please re-enter.\n\n" + self._max_usd_question(session),
                )
            session.draft.max_usd_value = max_value

        return CommandResult(success=True, message=self._skills_question(session))

    def _answer_skills(self, session: WizardSession, answer: str) -> CommandResult:
        if answer.lower() in ANY_WORDS:
            session.draft.skills = []
            return self._confirm_question(session)

        requested = [s.strip().lower() for s in answer.split(",") if s.strip()]
        skills = []
        for skill in requested:
            if skill in self.available_skills and skill not in skills:
                skills.append(skill)

        if not skills:
            return CommandResult(
                success=False,
                message="No valid skills recognized from your input. "
                "Please try again or type 'any'/'skip'.\n\n"
                + self._skills_question(session),
            )

        session.draft.skills = skills
        result = self._confirm_question(session)

        ignored = [s for s in requested if s not in self.available_skills]
        if ignored:
            result.message = f"Ignored unknown skills: {', '.join(ignored)}\n\n" + result.message
        return result

    def _save(self, chat_id: int, session: WizardSession) -> CommandResult:
        try:
            self.preference_store.apply_preferences(chat_id, session.draft)
        except ValueError as e:
            logger.warning(
                f"Rejected preferences: {e}", extra={"chat_id": chat_id}
            )
            del self._sessions[chat_id]
            return CommandResult(
                success=False,
                message=f"Could not save your preferences: {e}. Please run /configure again.",
            )

        del self._sessions[chat_id]
        logger.info("Preferences saved", extra={"chat_id": chat_id})
        return CommandResult(
            success=True,
            message="You're all set! I'll notify you about new opportunities based on "
            "these settings. You can use /myconfig to see them or /configure to "
            "change them.",
            edit_text="✅ Preferences saved successfully!",
        )
