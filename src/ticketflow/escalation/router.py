"""Escalation router: mention rules, team notifications and escalation chains.

Every continuation for a team mention (the response check and each further
escalation level) is armed on the scheduler under
``mention:<mention_id>:<team_id>``, so two teams tagged in one message
escalate independently.  Acknowledging a team's notification cancels that
owner, and the escalation path re-checks acknowledgment before acting, so an
acknowledged mention is never escalated again.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable, Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any

import structlog

from ticketflow.domain.types import (
    OUTSTANDING_NOTIFICATION_STATUSES,
    MentionActionType,
    NotificationKind,
    NotificationStatus,
    NotificationStrategy,
    Priority,
)
from ticketflow.escalation.availability import check_team_availability
from ticketflow.escalation.classifier import KeywordMentionClassifier, MentionClassifier
from ticketflow.escalation.models import (
    AvailabilityResult,
    MentionAction,
    MentionContext,
    MentionEvent,
    MentionNotification,
    MentionRule,
    MentionStats,
    TeamMention,
)
from ticketflow.escalation.rules import default_rules, order_rules, rule_matches
from ticketflow.observability.metrics import ESCALATIONS_SENT, MENTIONS_PROCESSED
from ticketflow.scheduling.timers import Clock, Scheduler, utc_now
from ticketflow.slack.blocks import (
    build_ack_hint_block,
    build_acknowledgment_text,
    build_escalation_blocks,
    build_mention_notification_blocks,
    build_out_of_office_text,
    build_team_mention_blocks,
    message_permalink,
    user_mention,
)
from ticketflow.slack.models import Directory, MessageContent, Messenger

logger = structlog.get_logger()

ActionHandler = Callable[[MentionAction, MentionEvent], Awaitable[None]]

SWEEP_OWNER = "sweep:mentions"
DEFAULT_NOTIFICATION_TTL = timedelta(minutes=30)
DEFAULT_HISTORY_LIMIT = 100
DEFAULT_HISTORY_RETENTION = timedelta(days=7)
DEFAULT_CLEANUP_INTERVAL_SECONDS = 3600.0

TIMEFRAMES: dict[str, timedelta] = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(days=7),
}


def mention_owner(mention_id: str, team_id: str | None = None) -> str:
    """Scheduler owner key for a mention's escalation timers within one team."""
    if team_id is None:
        return f"mention:{mention_id}"
    return f"mention:{mention_id}:{team_id}"


class EscalationRouter:
    """Routes mentions through rules and escalates unanswered team mentions.

    Args:
        messenger: Messaging collaborator; delivery errors propagate.
        scheduler: Timer registry for response checks, escalations, action
            delays and the cleanup sweep.
        directory: Optional identity lookup used to personalise notices and
            to find a timezone for teams that do not set one.
        classifier: Mention text classifier.
        rules: Initial rules.  ``None`` loads the built-in defaults.
        teams: Initial teams.
        clock: Source of the current time.
        notification_ttl: Default lifetime of a direct notification.
        history_limit: Mentions remembered per user for statistics.
        history_retention: Age after which history entries are pruned.
        cleanup_interval_seconds: Period of the cleanup sweep.
    """

    def __init__(
        self,
        messenger: Messenger,
        scheduler: Scheduler,
        *,
        directory: Directory | None = None,
        classifier: MentionClassifier | None = None,
        rules: Iterable[MentionRule] | None = None,
        teams: Iterable[TeamMention] = (),
        clock: Clock = utc_now,
        notification_ttl: timedelta = DEFAULT_NOTIFICATION_TTL,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        history_retention: timedelta = DEFAULT_HISTORY_RETENTION,
        cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
    ) -> None:
        self._messenger = messenger
        self._scheduler = scheduler
        self._directory = directory
        self._classifier = classifier or KeywordMentionClassifier()
        self._clock = clock
        self._notification_ttl = notification_ttl
        self._history_limit = history_limit
        self._history_retention = history_retention
        self._cleanup_interval_seconds = cleanup_interval_seconds

        self._rules: dict[str, MentionRule] = {}
        self._teams: dict[str, TeamMention] = {}
        self._notifications: dict[str, MentionNotification] = {}
        self._cooldowns: dict[str, datetime] = {}
        self._history: dict[str, list[datetime]] = {}
        self._mentions: dict[str, MentionEvent] = {}
        self._observed_at: dict[str, datetime] = {}
        self._mention_teams: dict[str, list[str]] = {}
        self._timer_owners: set[str] = set()

        self._action_handlers: dict[MentionActionType, ActionHandler] = {
            MentionActionType.NOTIFY: self._action_notify,
            MentionActionType.ESCALATE: self._action_escalate,
            MentionActionType.ASSIGN: self._action_assign,
            MentionActionType.CREATE_THREAD: self._action_create_thread,
            MentionActionType.ADD_REACTION: self._action_add_reaction,
            MentionActionType.FORWARD: self._action_forward,
        }
        missing = [kind.value for kind in MentionActionType if kind not in self._action_handlers]
        if missing:
            raise TypeError(f"No handler registered for mention action: {', '.join(missing)}")

        for rule in default_rules() if rules is None else rules:
            self.register_rule(rule)
        for team in teams:
            self.register_team(team)

    # -- Registries ------------------------------------------------------------

    def register_rule(self, rule: MentionRule | Mapping[str, Any]) -> MentionRule:
        """Add a rule, replacing any rule with the same id."""
        if not isinstance(rule, MentionRule):
            rule = MentionRule.model_validate(rule)
        self._rules[rule.id] = rule
        logger.info("Mention rule registered", rule_id=rule.id, name=rule.name)
        return rule

    def unregister_rule(self, rule_id: str) -> bool:
        self._cooldowns.pop(rule_id, None)
        return self._rules.pop(rule_id, None) is not None

    def list_rules(self) -> list[MentionRule]:
        return order_rules(self._rules.values())

    def register_team(self, team: TeamMention | Mapping[str, Any]) -> TeamMention:
        """Add a team, replacing any team with the same id."""
        if not isinstance(team, TeamMention):
            team = TeamMention.model_validate(team)
        self._teams[team.team_id] = team
        logger.info("Team registered for mentions", team_id=team.team_id, name=team.team_name)
        return team

    def get_team(self, team_id: str) -> TeamMention | None:
        return self._teams.get(team_id)

    def get_notification(self, notification_id: str) -> MentionNotification | None:
        return self._notifications.get(notification_id)

    def notifications_for(self, mention_id: str) -> list[MentionNotification]:
        """All tracked notifications for a mention, oldest first."""
        return [n for n in self._notifications.values() if n.mention_id == mention_id]

    def get_mention(self, mention_id: str) -> MentionEvent | None:
        return self._mentions.get(mention_id)

    def find_by_delivery(self, channel: str, message_ts: str) -> MentionNotification | None:
        """The notification delivered as message *message_ts* in *channel*, if any."""
        for notification in self._notifications.values():
            if notification.delivery_ts == message_ts and notification.delivery_channel == channel:
                return notification
        return None

    # -- Mentions --------------------------------------------------------------

    async def process(self, event: MentionEvent) -> MentionEvent | None:
        """Classify a mention and run every matching rule.

        Returns:
            The event with its derived context, or ``None`` if the event was
            missing required fields.

        Raises:
            Exception: Whatever an action handler or the messenger raised.
        """
        logger.info(
            "Processing mention event",
            kind=event.kind.value,
            mentioned_id=event.mentioned_id,
            channel=event.channel,
        )
        if not event.is_valid():
            logger.warning(
                "Invalid mention event",
                mentioned_id=event.mentioned_id,
                mentioned_by=event.mentioned_by,
                channel=event.channel,
                message_ts=event.message_ts,
            )
            return None

        now = self._clock()
        self._track_frequency(event.mentioned_id, now)
        event, context = self._classified(event)
        self._observe(event, now)
        MENTIONS_PROCESSED.inc()

        matching = [
            rule
            for rule in order_rules(self._rules.values())
            if rule_matches(rule, event, context, now)
        ]
        if not matching:
            logger.debug("No matching rules for mention", mention_id=event.mention_id)
            return event

        for rule in matching:
            if self._on_cooldown(rule.id):
                logger.debug("Rule on cooldown, skipping", rule_id=rule.id)
                continue
            if rule.cooldown_minutes:
                self._cooldowns[rule.id] = self._clock() + timedelta(minutes=rule.cooldown_minutes)
            try:
                await self._execute_rule(rule, event)
            except Exception:
                logger.exception(
                    "Failed to process mention", rule_id=rule.id, mention_id=event.mention_id
                )
                raise
        return event

    async def handle_team_mention(
        self,
        team_id: str,
        event: MentionEvent,
        *,
        urgent: bool = False,
        escalate: bool = False,
    ) -> None:
        """Notify a team about a mention and start tracking the response.

        Outside working time the mention gets an out-of-office notice (and the
        on-call member is notified) unless it is urgent.  With
        ``escalate=True`` the first escalation level is contacted right away
        instead of after the team's response time.
        """
        team = self._teams.get(team_id)
        if team is None:
            logger.warning("Team not found for mention", team_id=team_id)
            return
        if not event.is_valid():
            logger.warning("Invalid mention event for team", team_id=team_id)
            return

        logger.info("Handling team mention", team_id=team_id, team_name=team.team_name)
        now = self._clock()
        event, context = self._classified(event)
        self._observe(event, now)
        tagged = self._mention_teams.setdefault(event.mention_id, [])
        if team_id not in tagged:
            tagged.append(team_id)

        try:
            availability = await self._availability(team, now)
            if not availability.is_available and not (urgent or context.is_urgent):
                await self._handle_out_of_hours(team, event, availability)
                return

            strategy = self._determine_strategy(team, event, urgent)
            await self._execute_strategy(team, event, strategy)
            if escalate:
                await self.escalate(event.mention_id, 0, team_id=team_id)
            else:
                self._track_response(team, event)
        except Exception:
            logger.exception("Failed to handle team mention", team_id=team_id)
            raise

    async def escalate(
        self, mention_id: str, level: int = 0, *, team_id: str | None = None
    ) -> None:
        """Notify ``escalation_path[level]`` of the mention's team.

        *team_id* selects the team when several were tagged in one message;
        without it the team is inferred from the mention's notifications.
        Only that team's notifications and those sent outside any team count.
        Silently stops when none is outstanding, one was acknowledged, *level*
        was already escalated or *level* is past the end of the path.  Arms
        the next level after the team's response time.
        """
        notifications = self.notifications_for(mention_id)
        team = self._team_for(mention_id, notifications, team_id)
        if team is None or level < 0 or level >= len(team.escalation_path):
            logger.warning("No escalation path available", mention_id=mention_id, level=level)
            return

        scoped = [n for n in notifications if n.team_id in (None, team.team_id)]
        if any(n.status == NotificationStatus.ACKNOWLEDGED for n in scoped):
            logger.info("Mention already acknowledged, not escalating", mention_id=mention_id)
            return
        if not any(n.status in OUTSTANDING_NOTIFICATION_STATUSES for n in scoped):
            logger.warning("Notification not found for escalation", mention_id=mention_id)
            return
        if any(n.kind == NotificationKind.ESCALATION and n.level == level for n in scoped):
            logger.debug("Escalation level already notified", mention_id=mention_id, level=level)
            return

        logger.info("Escalating mention", mention_id=mention_id, level=level)
        now = self._clock()
        response_time = timedelta(minutes=team.response_time_minutes)
        notification = self._new_notification(
            mention_id,
            team.escalation_path[level],
            NotificationKind.ESCALATION,
            expires_at=now + response_time,
            team_id=team.team_id,
            level=level,
        )

        event = self._mentions.get(mention_id)
        text = event.text if event else ""
        channel = event.channel if event else ""
        content = MessageContent(
            text=f"Escalation Level {level + 1}: a mention needs your attention",
            blocks=build_escalation_blocks(level, channel, mention_id, text),
        )
        await self._deliver(notification, content)
        ESCALATIONS_SENT.inc()

        if level + 1 < len(team.escalation_path):
            self._arm(
                mention_owner(mention_id, team.team_id),
                response_time.total_seconds(),
                lambda: self.escalate(mention_id, level + 1, team_id=team.team_id),
            )

    async def acknowledge(self, notification_id: str, responder_id: str) -> None:
        """Mark a notification acknowledged and stop the mention's escalation.

        Every other outstanding notification for the same mention and team is
        marked acknowledged too, and only that team's escalation stops.  A
        notification sent outside any team acknowledges the mention for every
        team.  Acknowledging an already acknowledged notification does nothing.
        """
        notification = self._notifications.get(notification_id)
        if notification is None:
            logger.warning(
                "Notification not found for acknowledgment", notification_id=notification_id
            )
            return
        if notification.status == NotificationStatus.ACKNOWLEDGED:
            logger.debug("Notification already acknowledged", notification_id=notification_id)
            return

        now = self._clock()
        notification.status = NotificationStatus.ACKNOWLEDGED
        notification.acknowledged_at = now
        team_id = notification.team_id
        for other in self.notifications_for(notification.mention_id):
            if other.status not in OUTSTANDING_NOTIFICATION_STATUSES:
                continue
            if team_id is None or other.team_id == team_id:
                other.status = NotificationStatus.ACKNOWLEDGED
                other.acknowledged_at = now
        if team_id is None:
            self._cancel_mention_timers(notification.mention_id)
        else:
            self._cancel_timers(mention_owner(notification.mention_id, team_id))

        sent_at = notification.sent_at or notification.created_at
        logger.info(
            "Mention acknowledged",
            notification_id=notification_id,
            mention_id=notification.mention_id,
            responder_id=responder_id,
            response_seconds=(now - sent_at).total_seconds(),
        )

        event = self._mentions.get(notification.mention_id)
        if event is None:
            logger.debug("No observed mention to confirm in", mention_id=notification.mention_id)
            return
        await self._messenger.send_message(
            event.channel,
            MessageContent(text=build_acknowledgment_text(responder_id)),
            thread_ts=event.reply_ts,
        )

    # -- Statistics and maintenance --------------------------------------------

    def get_stats(self, timeframe: str = "day") -> MentionStats:
        """Summarise mention activity over the last hour, day or week.

        Raises:
            ValueError: For an unknown timeframe.
        """
        if timeframe not in TIMEFRAMES:
            raise ValueError(f"Unknown timeframe: {timeframe}")
        cutoff = self._clock() - TIMEFRAMES[timeframe]

        counts: dict[str, int] = {}
        for user_id, history in self._history.items():
            recent = sum(1 for moment in history if moment > cutoff)
            if recent:
                counts[user_id] = recent
        top = sorted(counts.items(), key=lambda item: item[1], reverse=True)[:10]

        in_window = [n for n in self._notifications.values() if n.created_at > cutoff]
        direct = sum(1 for n in in_window if n.kind == NotificationKind.DIRECT)
        escalations = sum(1 for n in in_window if n.kind == NotificationKind.ESCALATION)
        response_times = [
            (n.acknowledged_at - n.sent_at).total_seconds()
            for n in in_window
            if n.acknowledged_at is not None and n.sent_at is not None
        ]

        return MentionStats(
            timeframe=timeframe,
            total_mentions=sum(counts.values()),
            unique_users=len(counts),
            top_mentioned_users=top,
            average_response_seconds=(
                sum(response_times) / len(response_times) if response_times else None
            ),
            escalation_rate=escalations / direct if direct else 0.0,
        )

    def cleanup(self) -> None:
        """Expire overdue notifications and prune old history and state."""
        now = self._clock()
        retention_cutoff = now - self._history_retention

        expired = 0
        for notification_id, notification in list(self._notifications.items()):
            if (
                notification.status in OUTSTANDING_NOTIFICATION_STATUSES
                and notification.expires_at < now
            ):
                notification.status = NotificationStatus.EXPIRED
                expired += 1
            if notification.expires_at < retention_cutoff:
                del self._notifications[notification_id]

        for user_id, history in list(self._history.items()):
            kept = [moment for moment in history if moment > retention_cutoff]
            if kept:
                self._history[user_id] = kept
            else:
                del self._history[user_id]

        tracked = {n.mention_id for n in self._notifications.values()}
        for mention_id, observed_at in list(self._observed_at.items()):
            if observed_at < retention_cutoff and mention_id not in tracked:
                self._forget_mention(mention_id)

        for rule_id, until in list(self._cooldowns.items()):
            if until <= now:
                del self._cooldowns[rule_id]

        if expired:
            logger.info("Expired mention notifications", count=expired)

    def start_background_tasks(self) -> None:
        """Arm the periodic cleanup sweep."""
        self._scheduler.cancel_owner(SWEEP_OWNER)
        self._scheduler.every(SWEEP_OWNER, self._cleanup_interval_seconds, self.cleanup)

    def shutdown(self) -> None:
        """Cancel the sweep and every pending escalation timer."""
        self._scheduler.cancel_owner(SWEEP_OWNER)
        for owner in list(self._timer_owners):
            self._cancel_timers(owner)
        logger.info("Escalation router stopped", notifications=len(self._notifications))

    # -- Rule execution --------------------------------------------------------

    async def _execute_rule(self, rule: MentionRule, event: MentionEvent) -> None:
        logger.debug("Executing mention rule", rule_id=rule.id, name=rule.name)
        for action in rule.actions:
            if action.delay_seconds:
                owner = f"rule:{rule.id}:{event.mention_id}"
                self._timer_owners.add(owner)
                try:
                    await self._scheduler.sleep(owner, action.delay_seconds)
                finally:
                    if not self._scheduler.pending(owner):
                        self._timer_owners.discard(owner)
            await self._action_handlers[action.type](action, event)

    async def _action_notify(self, action: MentionAction, event: MentionEvent) -> None:
        config = action.config
        if config.get("broadcast"):
            recipients = self._broadcast_recipients(event.mentioned_id)
        else:
            recipients = config.get("recipients") or [
                config.get("recipient") or event.mentioned_id
            ]
        for recipient in recipients:
            notification = self._new_notification(
                event.mention_id,
                str(recipient),
                NotificationKind.DIRECT,
                expires_at=self._clock() + self._notification_ttl,
            )
            await self._deliver(notification, await self._direct_content(event))

    async def _action_escalate(self, action: MentionAction, event: MentionEvent) -> None:
        await self.escalate(event.mention_id, int(action.config.get("level", 0)))

    async def _action_assign(self, action: MentionAction, event: MentionEvent) -> None:
        assignee = action.config.get("user_id") or event.mentioned_id
        await self._messenger.send_message(
            event.channel,
            MessageContent(
                text=f"{user_mention(str(assignee))} has been assigned to this request."
            ),
            thread_ts=event.reply_ts,
        )

    async def _action_create_thread(self, action: MentionAction, event: MentionEvent) -> None:
        text = action.config.get("text") or "Following up on this mention here."
        await self._messenger.send_message(
            event.channel, MessageContent(text=str(text)), thread_ts=event.reply_ts
        )

    async def _action_add_reaction(self, action: MentionAction, event: MentionEvent) -> None:
        emoji = str(action.config.get("emoji") or "eyes")
        await self._messenger.add_reaction(event.channel, event.message_ts, emoji)

    async def _action_forward(self, action: MentionAction, event: MentionEvent) -> None:
        target = action.config.get("channel")
        if not target:
            raise ValueError("forward action requires a channel")
        link = message_permalink(event.channel, event.message_ts)
        text = (
            f"Forwarded mention from {user_mention(event.mentioned_by)} in <#{event.channel}>:\n"
            f">{event.text}\n<{link}|View message>"
        )
        await self._messenger.send_message(str(target), MessageContent(text=text))

    # -- Team notification -----------------------------------------------------

    async def _availability(self, team: TeamMention, now: datetime) -> AvailabilityResult:
        timezone = team.availability.timezone
        if not timezone and self._directory is not None and team.members:
            timezone = await self._directory.user_timezone(team.members[0]) or "UTC"
        return check_team_availability(team.availability, now, timezone=timezone or "UTC")

    def _determine_strategy(
        self, team: TeamMention, event: MentionEvent, urgent: bool
    ) -> NotificationStrategy:
        critical = event.context is not None and event.context.priority == Priority.CRITICAL
        if urgent or critical:
            return NotificationStrategy.BROADCAST
        if team.availability.on_call:
            return NotificationStrategy.ONCALL
        return NotificationStrategy.SEQUENTIAL

    async def _execute_strategy(
        self, team: TeamMention, event: MentionEvent, strategy: NotificationStrategy
    ) -> None:
        logger.info(
            "Notifying team",
            team_id=team.team_id,
            strategy=strategy.value,
            mention_id=event.mention_id,
        )
        match strategy:
            case NotificationStrategy.BROADCAST:
                content = MessageContent(
                    text=f"Team mention: {event.text}",
                    blocks=build_team_mention_blocks(
                        team.team_name, event.mentioned_by, event.text, event.channel
                    ),
                )
                for member in team.members:
                    await self._notify_member(team, event, member, content)
            case NotificationStrategy.ONCALL:
                if team.availability.on_call:
                    await self._notify_member(team, event, team.availability.on_call)
            case NotificationStrategy.SEQUENTIAL:
                if team.members:
                    await self._notify_member(team, event, team.members[0])

    async def _notify_member(
        self,
        team: TeamMention,
        event: MentionEvent,
        recipient: str,
        content: MessageContent | None = None,
    ) -> MentionNotification:
        chain = timedelta(minutes=team.response_time_minutes * (len(team.escalation_path) + 1))
        notification = self._new_notification(
            event.mention_id,
            recipient,
            NotificationKind.DIRECT,
            expires_at=self._clock() + max(self._notification_ttl, chain),
            team_id=team.team_id,
        )
        await self._deliver(notification, content or await self._direct_content(event))
        return notification

    def _broadcast_recipients(self, mentioned_id: str) -> list[str]:
        """Members of the team *mentioned_id* names, or of every team it belongs to."""
        recipients: list[str] = []
        for team in self._teams.values():
            if mentioned_id != team.team_id and mentioned_id not in team.members:
                continue
            recipients.extend(m for m in team.members if m not in recipients)
        return recipients or [mentioned_id]

    async def _handle_out_of_hours(
        self, team: TeamMention, event: MentionEvent, availability: AvailabilityResult
    ) -> None:
        logger.info(
            "Team unavailable for mention",
            team_id=team.team_id,
            reason=availability.reason,
            on_call=availability.on_call,
        )
        if availability.on_call:
            await self._notify_member(team, event, availability.on_call)
        await self._messenger.send_message(
            event.channel,
            MessageContent(text=build_out_of_office_text(team.team_name, availability.on_call)),
            thread_ts=event.reply_ts,
        )

    def _track_response(self, team: TeamMention, event: MentionEvent) -> None:
        mention_id, team_id = event.mention_id, team.team_id
        self._arm(
            mention_owner(mention_id, team_id),
            team.response_time_minutes * 60,
            lambda: self._check_for_response(mention_id, team_id),
        )

    async def _check_for_response(self, mention_id: str, team_id: str) -> None:
        if any(
            n.status == NotificationStatus.ACKNOWLEDGED and n.team_id in (None, team_id)
            for n in self.notifications_for(mention_id)
        ):
            return
        await self.escalate(mention_id, 0, team_id=team_id)

    # -- Helpers ---------------------------------------------------------------

    def _classified(self, event: MentionEvent) -> tuple[MentionEvent, MentionContext]:
        context = event.context
        if context is None:
            context = self._classifier.classify(event.text)
            event = event.model_copy(update={"context": context})
        return event, context

    def _observe(self, event: MentionEvent, now: datetime) -> None:
        self._mentions[event.mention_id] = event
        self._observed_at.setdefault(event.mention_id, now)

    def _forget_mention(self, mention_id: str) -> None:
        self._mentions.pop(mention_id, None)
        self._observed_at.pop(mention_id, None)
        self._mention_teams.pop(mention_id, None)

    def _track_frequency(self, user_id: str, now: datetime) -> None:
        history = self._history.setdefault(user_id, [])
        history.append(now)
        if len(history) > self._history_limit:
            del history[: len(history) - self._history_limit]

    def _on_cooldown(self, rule_id: str) -> bool:
        until = self._cooldowns.get(rule_id)
        return until is not None and until > self._clock()

    def _team_for(
        self,
        mention_id: str,
        notifications: list[MentionNotification],
        team_id: str | None = None,
    ) -> TeamMention | None:
        if team_id is not None:
            return self._teams.get(team_id)
        for tagged in self._mention_teams.get(mention_id, []):
            if tagged in self._teams:
                return self._teams[tagged]
        recipients = {n.recipient_id for n in notifications}
        for team in self._teams.values():
            if recipients.intersection(team.members):
                return team
        return None

    def _new_notification(
        self,
        mention_id: str,
        recipient_id: str,
        kind: NotificationKind,
        *,
        expires_at: datetime,
        team_id: str | None = None,
        level: int | None = None,
    ) -> MentionNotification:
        return MentionNotification(
            id=f"mention_{uuid.uuid4().hex[:12]}",
            mention_id=mention_id,
            recipient_id=recipient_id,
            kind=kind,
            created_at=self._clock(),
            expires_at=expires_at,
            team_id=team_id,
            level=level,
        )

    async def _direct_content(self, event: MentionEvent) -> MessageContent:
        sender = event.mentioned_by
        if self._directory is not None:
            sender = await self._directory.user_name(event.mentioned_by)
        context = event.context or self._classifier.classify(event.text)
        return MessageContent(
            text=f"Mention notification: {event.text}",
            blocks=build_mention_notification_blocks(
                sender,
                event.channel,
                event.message_ts,
                event.text,
                context.priority.value,
                context.category,
            ),
        )

    async def _deliver(self, notification: MentionNotification, content: MessageContent) -> None:
        blocks = [*(content.blocks or []), build_ack_hint_block(notification.id)]
        ref = await self._messenger.send_message(
            notification.recipient_id, content.model_copy(update={"blocks": blocks})
        )
        notification.status = NotificationStatus.SENT
        notification.sent_at = self._clock()
        notification.delivery_channel = ref.channel
        notification.delivery_ts = ref.ts
        self._notifications[notification.id] = notification

    def _arm(self, owner: str, delay_seconds: float, callback: Callable[[], Any]) -> None:
        self._timer_owners.add(owner)
        self._scheduler.call_later(owner, delay_seconds, callback)

    def _cancel_timers(self, owner: str) -> None:
        self._scheduler.cancel_owner(owner)
        self._timer_owners.discard(owner)

    def _cancel_mention_timers(self, mention_id: str) -> None:
        base = mention_owner(mention_id)
        for owner in list(self._timer_owners):
            if owner == base or owner.startswith(f"{base}:"):
                self._cancel_timers(owner)
