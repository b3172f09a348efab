"""
Proactive trigger: re-enters every registered team's daily challenge
without waiting for a message from the team.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from flask import Flask, Response

from challenge_store import ChallengeStore, DailyChallengeTeam
from errors import ConfigurationMissing
from workflow import OutboundMessage, WorkflowEngine

logger = logging.getLogger(__name__)

TRIGGER_RESPONSE = "<html><body><h1>Proactive messages have been sent.</h1></body></html>"

Sender = Callable[[DailyChallengeTeam, OutboundMessage], Awaitable[None]]


class TriggerDispatcher:
    """Advances the workflow of every registered team, one team at a time."""

    def __init__(self, engine: WorkflowEngine, store: ChallengeStore, sender: Sender,
                 options: Optional[Dict] = None):
        self.engine = engine
        self.store = store
        self.sender = sender
        self.options = options

    @staticmethod
    def check_delivery(team_key: str, team: DailyChallengeTeam) -> DailyChallengeTeam:
        """Make sure a stored registration can be used to reach the team."""
        if not team.is_registered:
            raise ValueError(f"Team {team_key} has no stored team id")
        if not team.bot_id:
            raise ValueError(f"Team {team_key} has no stored bot id")
        return team

    async def run_all(self) -> int:
        """Notify every registered team.

        A failure for one team is logged and the remaining teams are still
        processed.

        Returns:
            Number of teams that were notified
        """
        try:
            teams = self.store.get_all_teams()
        except ConfigurationMissing as e:
            logger.error(f"Cannot trigger daily challenges: {e}")
            return 0

        notified = 0
        for team_key, team in teams.items():
            try:
                delivery = self.check_delivery(team_key, team)
                outbound = await self.engine.advance(team_key, None, delivery=delivery, options=self.options)
                await self.sender(delivery, outbound)
                notified += 1
            except Exception as e:
                logger.error(f"Failed to send proactive message to team {team_key}: {e}")
                # Continue with the other teams even if one fails

        logger.info(f"Proactive messages sent to {notified} of {len(teams)} teams")
        return notified


def create_trigger_app(run_trigger: Callable[[], Awaitable[int]]) -> Flask:
    """Create the web app exposing the trigger endpoint.

    Args:
        run_trigger: Coroutine function that runs a full dispatcher pass
    """
    app = Flask(__name__)

    @app.route("/api/triggerchallenge", methods=["GET"])
    def trigger_challenge():
        notified = asyncio.run(run_trigger())
        logger.info(f"Trigger endpoint completed, {notified} teams notified")
        return Response(TRIGGER_RESPONSE, status=200, mimetype="text/html")

    return app
