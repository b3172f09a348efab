"""
Daily challenge workflow engine.

Each call to WorkflowEngine.advance reloads a team's records from the
challenge store, applies one command (or none, for a proactive trigger),
persists the outcome and returns the message to show the team.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from challenge_store import (
    ChallengeStatus,
    ChallengeStore,
    DailyChallenge,
    DailyChallengeImage,
    DailyChallengeInfo,
    DailyChallengeTeam,
    ImageSource,
)
from errors import (
    ConfigurationMissing,
    LookupFailure,
    ProviderUnavailable,
    QuotaExceeded,
    WhereOnEarthError,
)
from location_providers import IMAGE_COUNT

logger = logging.getLogger(__name__)

# Button values double as the commands matched below
CHOOSE_IMAGE = "Choose image"
TRY_ANOTHER_IMAGE = "Try another image"
SWITCH_TO_GOOGLE = "Switch to Google"
SWITCH_TO_BING = "Switch to Bing"

SWITCH_COMMANDS = {
    ImageSource.GOOGLE: SWITCH_TO_GOOGLE,
    ImageSource.BING: SWITCH_TO_BING,
}

CARD_TITLE = "Today's Daily Challenge"
DEFAULT_LOOKUP_TIMEOUT = 20
# Extra wait for a provider that is finishing its last request at the deadline
PROVIDER_GRACE = 2.0


@dataclass
class CardButton:
    label: str
    value: str


@dataclass
class ChoiceCard:
    """A card with an optional image and a fixed set of command buttons."""
    title: str
    subtitle: Optional[str] = None
    text: Optional[str] = None
    image_url: Optional[str] = None
    buttons: List[CardButton] = field(default_factory=list)


@dataclass
class OutboundMessage:
    """What a team should see after a turn."""
    text: Optional[str] = None
    card: Optional[ChoiceCard] = None
    state: Optional[ChallengeStatus] = None
    error_kind: Optional[str] = None


GuessingHandler = Callable[[str, DailyChallenge, Optional[str], Optional[Dict]], Awaitable[OutboundMessage]]


async def present_current_challenge(team_key: str, challenge: DailyChallenge,
                                    command: Optional[str] = None,
                                    options: Optional[Dict] = None) -> OutboundMessage:
    """Show the published challenge while guesses are being collected."""
    prompt = (options or {}).get('prompt')
    entries = len(challenge.entries)
    text = (
        f"Guessing is open! {entries} guess{'es' if entries != 1 else ''} so far.\n"
        "Reply with where you think this photo was taken."
    )
    return OutboundMessage(
        text=prompt,
        card=ChoiceCard(title=CARD_TITLE, text=text, image_url=challenge.photo_url),
        state=ChallengeStatus.GUESSING
    )


class WorkflowEngine:
    """Per-team state machine for the daily challenge.

    States are AwaitingImage (browsing candidate images), Guessing (handled
    by the guessing workflow) and Resolved (the result is shown).
    """

    def __init__(self, store: ChallengeStore, providers: Dict[ImageSource, object],
                 guessing_handler: Optional[GuessingHandler] = None,
                 lookup_timeout: float = DEFAULT_LOOKUP_TIMEOUT,
                 provider_grace: float = PROVIDER_GRACE):
        self.store = store
        self.providers = providers
        self.guessing_handler = guessing_handler or present_current_challenge
        self.lookup_timeout = lookup_timeout
        self.provider_grace = provider_grace

    async def advance(self, team_key: str, command: Optional[str] = None,
                      delivery: Optional[DailyChallengeTeam] = None,
                      options: Optional[Dict] = None) -> OutboundMessage:
        """Move a team's challenge forward by one turn.

        Args:
            team_key: Key of the team whose challenge is advanced
            command: Text of the inbound turn, or None for a proactive trigger
            delivery: Coordinates used to register the team on first contact
            options: Pending prompt options passed on to the guessing workflow

        Returns:
            The message to deliver to the team
        """
        team_key = str(team_key)
        try:
            challenge = self.store.get_daily_challenge(team_key)

            if challenge.current_status == ChallengeStatus.RESOLVED:
                return self._result_message(challenge)

            if challenge.current_status == ChallengeStatus.GUESSING:
                if command and CHOOSE_IMAGE.lower() in command.lower():
                    # Re-delivered choice; the challenge is already published
                    logger.info(f"Team {team_key} already chose today's image")
                    return self._image_chosen_message(challenge)
                return await self.guessing_handler(team_key, challenge, command, options)

            return await self._awaiting_image(team_key, command, delivery)
        except ConfigurationMissing as e:
            logger.error(f"Daily challenge storage not configured: {e}")
            return OutboundMessage(text=f"NOTE: {e.message}", error_kind=e.kind)

    async def _awaiting_image(self, team_key: str, command: Optional[str],
                              delivery: Optional[DailyChallengeTeam]) -> OutboundMessage:
        if command is None:
            if delivery is not None and delivery.is_registered:
                self.store.save_team_info(team_key, delivery)
            info = self.store.get_latest_info(team_key)
            return await self._present_candidate(team_key, info, TRY_ANOTHER_IMAGE)

        lowered = command.lower()
        if CHOOSE_IMAGE.lower() in lowered:
            return await self._choose_image(team_key)
        if TRY_ANOTHER_IMAGE.lower() in lowered:
            return await self._try_another_image(team_key)
        if SWITCH_TO_GOOGLE.lower() in lowered:
            return await self._switch_source(team_key, ImageSource.GOOGLE)
        if SWITCH_TO_BING.lower() in lowered:
            return await self._switch_source(team_key, ImageSource.BING)

        logger.info(f"Team {team_key} sent an unrecognized command: {command}")
        image = self.store.get_daily_challenge_image(team_key)
        if image.url:
            reply = OutboundMessage(card=self._image_choice_card(image), state=ChallengeStatus.AWAITING_IMAGE)
        else:
            reply = await self._present_candidate(team_key, self.store.get_latest_info(team_key), TRY_ANOTHER_IMAGE)
        reply.text = "Sorry, not sure about that"
        return reply

    async def _try_another_image(self, team_key: str) -> OutboundMessage:
        info = self.store.get_latest_info(team_key)
        next_info = DailyChallengeInfo(
            current_source=info.current_source,
            current_image_index=(info.current_image_index + 1) % IMAGE_COUNT
        )
        return await self._present_candidate(team_key, next_info, TRY_ANOTHER_IMAGE, save_info=True)

    async def _switch_source(self, team_key: str, source: ImageSource) -> OutboundMessage:
        info = self.store.get_latest_info(team_key)
        next_info = DailyChallengeInfo(current_source=source, current_image_index=info.current_image_index)
        logger.info(f"Team {team_key} switching image source to {source.value}")
        return await self._present_candidate(team_key, next_info, SWITCH_COMMANDS[source], save_info=True)

    async def _present_candidate(self, team_key: str, info: DailyChallengeInfo,
                                 retry_command: str, save_info: bool = False) -> OutboundMessage:
        """Draw a candidate from info.current_source and offer it to the team.

        Nothing is persisted unless the provider returns an image; the image
        is written before the info so the stored source never points at a
        provider whose image is not the one on display.
        """
        provider = self.providers[info.current_source]
        try:
            image = await self._call_provider(
                provider.next_candidate,
                info.current_image_index,
                deadline=time.monotonic() + self.lookup_timeout
            )
        except ProviderUnavailable as e:
            logger.warning(f"{info.current_source.value} could not supply an image for team {team_key}: {e}")
            return self._degraded_message(info.current_source, e, retry_command)
        except LookupFailure as e:
            logger.error(f"Could not load an image from {info.current_source.value} for team {team_key}: {e}")
            return self._degraded_message(info.current_source, e, retry_command)

        self.store.save_daily_challenge_image(team_key, image)
        if save_info:
            self.store.save_latest_info(team_key, info)
        logger.info(f"Offered {image.image_source.value} image '{image.image_text}' to team {team_key}")
        return OutboundMessage(card=self._image_choice_card(image), state=ChallengeStatus.AWAITING_IMAGE)

    async def _choose_image(self, team_key: str) -> OutboundMessage:
        image = self.store.get_daily_challenge_image(team_key)
        if not image.url:
            reply = await self._present_candidate(team_key, self.store.get_latest_info(team_key), TRY_ANOTHER_IMAGE)
            reply.text = "There's no image to choose yet, here's one to start with."
            return reply

        # Resolve with the provider that produced the image on display
        provider = self.providers[image.image_source]
        logger.info(f"Image text: {image.image_text}")
        try:
            details = await self._call_provider(provider.resolve_location, image.image_text)
            if details is None:
                raise LookupFailure("Unable to retrieve details of image")
        except WhereOnEarthError as e:
            logger.error(f"Unable to resolve location of '{image.image_text}' for team {team_key}: {e}")
            return OutboundMessage(
                text="Sorry, I couldn't find the location of that image. Please try choosing it again.",
                card=self._image_choice_card(image),
                state=ChallengeStatus.AWAITING_IMAGE,
                error_kind=LookupFailure.kind
            )

        challenge = self.store.get_daily_challenge(team_key)
        if challenge.current_status != ChallengeStatus.AWAITING_IMAGE:
            # Another turn published the challenge while the lookup was running
            return self._image_chosen_message(challenge)

        challenge.photo_url = image.url
        challenge.text = image.image_text
        challenge.latitude = details.latitude
        challenge.longitude = details.longitude
        challenge.extracted_location = details.extracted_location
        challenge.entries = []
        challenge.published_time = datetime.now().isoformat()
        challenge.current_status = ChallengeStatus.GUESSING
        self.store.save_daily_challenge(team_key, challenge)

        logger.info(f"Team {team_key} chose '{challenge.text}' "
                    f"({challenge.latitude}, {challenge.longitude})")
        return self._image_chosen_message(challenge)

    async def _call_provider(self, func, *args, **kwargs):
        """Run a blocking provider call with a bounded wait.

        Candidate searches are also given a deadline of lookup_timeout so they
        stop on their own; the wait allows provider_grace on top of it for a
        request still in flight. Provider-specific conditions pass through;
        anything else, including a timeout, becomes a LookupFailure.
        """
        timeout = self.lookup_timeout + self.provider_grace
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args, **kwargs), timeout=timeout)
        except WhereOnEarthError:
            raise
        except asyncio.TimeoutError as e:
            raise LookupFailure(f"No response within {timeout} seconds") from e
        except Exception as e:
            raise LookupFailure(str(e)) from e

    def _image_choice_card(self, image: DailyChallengeImage) -> ChoiceCard:
        if image.image_source == ImageSource.GOOGLE:
            buttons = [
                CardButton(CHOOSE_IMAGE, CHOOSE_IMAGE),
                CardButton("Try another Google image", TRY_ANOTHER_IMAGE),
                CardButton(SWITCH_TO_BING, SWITCH_TO_BING)
            ]
        else:
            buttons = [
                CardButton(CHOOSE_IMAGE, CHOOSE_IMAGE),
                CardButton(TRY_ANOTHER_IMAGE, TRY_ANOTHER_IMAGE),
                CardButton(SWITCH_TO_GOOGLE, SWITCH_TO_GOOGLE)
            ]
        return ChoiceCard(
            title=CARD_TITLE,
            subtitle=image.image_region,
            text="Click to choose the image for today or try another image.",
            image_url=image.url,
            buttons=buttons
        )

    def _degraded_message(self, source: ImageSource, error: WhereOnEarthError,
                          retry_command: str) -> OutboundMessage:
        other = ImageSource.BING if source == ImageSource.GOOGLE else ImageSource.GOOGLE
        if isinstance(error, QuotaExceeded):
            text = (f"The {source.value} Maps search service has exceeded its usage. "
                    f"Please wait a few minutes and try again or switch to {other.value}.")
        elif isinstance(error, ProviderUnavailable):
            text = error.message
        else:
            text = f"Sorry, {source.value} didn't respond in time. Please try again or switch to {other.value}."
        card = ChoiceCard(
            title=CARD_TITLE,
            subtitle="Not found",
            text=text,
            buttons=[
                CardButton(f"Try another {source.value} image", retry_command),
                CardButton(SWITCH_COMMANDS[other], SWITCH_COMMANDS[other])
            ]
        )
        return OutboundMessage(card=card, state=ChallengeStatus.AWAITING_IMAGE, error_kind=error.kind)

    def _image_chosen_message(self, challenge: DailyChallenge) -> OutboundMessage:
        card = ChoiceCard(
            title=CARD_TITLE,
            subtitle="Image chosen",
            text="Today's image has been chosen! Reply with where you think this photo was taken.",
            image_url=challenge.photo_url
        )
        return OutboundMessage(card=card, state=ChallengeStatus.GUESSING)

    def _result_message(self, challenge: DailyChallenge) -> OutboundMessage:
        card = ChoiceCard(
            title="We have a winner!",
            subtitle=challenge.winner_name,
            text=(
                f"{challenge.winner_name} guessed {challenge.winner_guess}, "
                f"{challenge.distance_to_entry:.2f} km from {challenge.extracted_location}.\n"
                f"The photo was taken at {challenge.text}."
            ),
            image_url=challenge.photo_url
        )
        return OutboundMessage(card=card, state=ChallengeStatus.RESOLVED)
