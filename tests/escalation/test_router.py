"""Tests for the escalation router: rules, team notifications and escalation chains."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
from helpers import make_mention, sent_channels, sent_texts

from ticketflow.domain.types import NotificationKind, NotificationStatus, Priority
from ticketflow.escalation.models import MentionContext, MentionRule, TeamMention
from ticketflow.escalation.router import SWEEP_OWNER, EscalationRouter, mention_owner

MENTION_ID = "1700000000.000100"
OWNER = mention_owner(MENTION_ID, "S_PLATFORM")

URGENT_RULE = {
    "id": "urgent",
    "conditions": [{"type": "urgency", "operator": "equals", "value": True}],
    "actions": [{"type": "notify"}],
    "cooldown": 5,
}


def _team(**overrides) -> TeamMention:
    fields = {
        "team_id": "S_PLATFORM",
        "team_name": "Platform",
        "members": ["U_MEMBER"],
        "escalation_path": ["U_LEAD", "U_MANAGER"],
        "response_time": 1,
    }
    fields.update(overrides)
    return TeamMention.model_validate(fields)


@pytest.fixture
def router(messenger, timers, clock) -> EscalationRouter:
    return EscalationRouter(messenger, timers, rules=[], teams=[_team()], clock=clock)


def _escalations(router: EscalationRouter) -> list[tuple[str, int | None]]:
    return [
        (n.recipient_id, n.level)
        for n in router.notifications_for(MENTION_ID)
        if n.kind == NotificationKind.ESCALATION
    ]


class TestRegistries:
    def test_default_rules_when_none_given(self, messenger, timers) -> None:
        router = EscalationRouter(messenger, timers)
        assert [r.id for r in router.list_rules()] == ["critical_mention", "urgent_mention"]

    def test_register_rule_from_mapping(self, router) -> None:
        rule = router.register_rule(URGENT_RULE)

        assert isinstance(rule, MentionRule)
        assert router.list_rules() == [rule]
        assert router.unregister_rule("urgent") is True
        assert router.unregister_rule("urgent") is False

    def test_register_team_replaces(self, router) -> None:
        router.register_team(_team(team_name="Platform v2"))
        assert router.get_team("S_PLATFORM").team_name == "Platform v2"


class TestProcess:
    @pytest.mark.anyio()
    async def test_invalid_event_is_ignored(self, router, messenger) -> None:
        router.register_rule(URGENT_RULE)

        assert await router.process(make_mention(channel="")) is None
        messenger.send_message.assert_not_called()

    @pytest.mark.anyio()
    async def test_event_is_classified(self, router) -> None:
        event = await router.process(make_mention(text="CRITICAL outage in prod"))

        assert event.context.priority == Priority.CRITICAL
        assert router.get_mention(MENTION_ID) is event

    @pytest.mark.anyio()
    async def test_given_context_is_kept(self, router) -> None:
        context = MentionContext(priority=Priority.LOW)

        event = await router.process(make_mention(text="urgent!", context=context))

        assert event.context == context

    @pytest.mark.anyio()
    async def test_notify_sends_direct_notification(self, router, messenger) -> None:
        router.register_rule(URGENT_RULE)

        await router.process(make_mention(text="urgent: login is down"))

        assert sent_channels(messenger) == ["U_TARGET"]
        (notification,) = router.notifications_for(MENTION_ID)
        assert notification.kind == NotificationKind.DIRECT
        assert notification.status == NotificationStatus.SENT
        assert notification.delivery_channel == "U_TARGET"
        assert notification.delivery_ts == "1700000000.000001"

    @pytest.mark.anyio()
    async def test_notification_carries_ack_hint(self, router, messenger) -> None:
        router.register_rule(URGENT_RULE)

        await router.process(make_mention(text="urgent: login is down"))

        (notification,) = router.notifications_for(MENTION_ID)
        blocks = messenger.send_message.call_args.args[1].blocks
        assert f"/ack {notification.id}" in str(blocks[-1])

    @pytest.mark.anyio()
    async def test_rules_run_highest_priority_first(self, router, messenger) -> None:
        for rule_id, priority in (("low", 1), ("high", 9)):
            router.register_rule(
                {
                    "id": rule_id,
                    "priority": priority,
                    "actions": [{"type": "create_thread", "config": {"text": rule_id}}],
                }
            )

        await router.process(make_mention())

        assert sent_texts(messenger) == ["high", "low"]

    @pytest.mark.anyio()
    async def test_cooldown_suppresses_repeat_firing(self, router, messenger, clock) -> None:
        router.register_rule(URGENT_RULE)

        await router.process(make_mention(text="urgent!", message_ts="1.1"))
        clock.advance(60)
        await router.process(make_mention(text="urgent!", message_ts="1.2"))
        clock.advance(600)
        await router.process(make_mention(text="urgent!", message_ts="1.3"))

        assert messenger.send_message.call_count == 2
        assert {n.mention_id for n in router.notifications_for("1.1")} == {"1.1"}
        assert router.notifications_for("1.2") == []
        assert len(router.notifications_for("1.3")) == 1

    @pytest.mark.anyio()
    async def test_failing_action_propagates(self, router, messenger) -> None:
        router.register_rule({"id": "fwd", "actions": [{"type": "forward"}]})

        with pytest.raises(ValueError, match="channel"):
            await router.process(make_mention())

    @pytest.mark.anyio()
    async def test_delayed_action_waits(self, router, messenger, timers) -> None:
        router.register_rule(
            {"id": "later", "actions": [{"type": "add_reaction", "delay": 30}]}
        )

        task = asyncio.get_running_loop().create_task(router.process(make_mention()))
        await timers.advance(29)
        messenger.add_reaction.assert_not_called()

        await timers.advance(1)
        await task
        messenger.add_reaction.assert_awaited_once_with("C_SUPPORT", MENTION_ID, "eyes")


class TestActions:
    @pytest.mark.anyio()
    async def test_assign_posts_in_thread(self, router, messenger) -> None:
        router.register_rule(
            {"id": "a", "actions": [{"type": "assign", "config": {"user_id": "U_AGENT"}}]}
        )

        await router.process(make_mention(thread_ts="1699999999.000001"))

        channel, content = messenger.send_message.call_args.args
        assert channel == "C_SUPPORT"
        assert content.text == "<@U_AGENT> has been assigned to this request."
        assert messenger.send_message.call_args.kwargs["thread_ts"] == "1699999999.000001"

    @pytest.mark.anyio()
    async def test_create_thread_default_text(self, router, messenger) -> None:
        router.register_rule({"id": "t", "actions": [{"type": "create_thread"}]})

        await router.process(make_mention())

        assert sent_texts(messenger) == ["Following up on this mention here."]
        assert messenger.send_message.call_args.kwargs["thread_ts"] == MENTION_ID

    @pytest.mark.anyio()
    async def test_forward_links_original(self, router, messenger) -> None:
        router.register_rule(
            {"id": "f", "actions": [{"type": "forward", "config": {"channel": "C_TRIAGE"}}]}
        )

        await router.process(make_mention())

        channel, content = messenger.send_message.call_args.args
        assert channel == "C_TRIAGE"
        assert "https://slack.com/archives/C_SUPPORT/p1700000000000100" in content.text

    @pytest.mark.anyio()
    async def test_notify_explicit_recipients(self, router, messenger) -> None:
        router.register_rule(
            {"id": "n", "actions": [{"type": "notify", "config": {"recipients": ["U_A", "U_B"]}}]}
        )

        await router.process(make_mention())

        assert sent_channels(messenger) == ["U_A", "U_B"]

    @pytest.mark.anyio()
    async def test_notify_uses_directory_name(self, messenger, timers, clock) -> None:
        directory = AsyncMock()
        directory.user_name.return_value = "Grace"
        router = EscalationRouter(
            messenger,
            timers,
            directory=directory,
            rules=[MentionRule.model_validate({"id": "n", "actions": [{"type": "notify"}]})],
            clock=clock,
        )

        await router.process(make_mention())

        directory.user_name.assert_awaited_once_with("U_SENDER")
        assert "Grace" in str(messenger.send_message.call_args.args[1].blocks)


class TestTeamMention:
    @pytest.mark.anyio()
    async def test_unknown_team_is_ignored(self, router, messenger) -> None:
        await router.handle_team_mention("S_UNKNOWN", make_mention())
        messenger.send_message.assert_not_called()

    @pytest.mark.anyio()
    async def test_sequential_notifies_first_member(self, router, messenger, timers) -> None:
        router.register_team(_team(members=["U_FIRST", "U_SECOND"]))

        await router.handle_team_mention("S_PLATFORM", make_mention())

        assert sent_channels(messenger) == ["U_FIRST"]
        assert timers.pending(OWNER) == 1

    @pytest.mark.anyio()
    async def test_urgent_broadcasts_to_all_members(self, router, messenger) -> None:
        router.register_team(_team(members=["U_FIRST", "U_SECOND"]))

        await router.handle_team_mention("S_PLATFORM", make_mention(), urgent=True)

        assert sent_channels(messenger) == ["U_FIRST", "U_SECOND"]
        assert sent_texts(messenger)[0].startswith("Team mention:")

    @pytest.mark.anyio()
    async def test_critical_text_broadcasts(self, router, messenger) -> None:
        router.register_team(_team(members=["U_FIRST", "U_SECOND"]))

        await router.handle_team_mention("S_PLATFORM", make_mention(text="critical: db down"))

        assert sent_channels(messenger) == ["U_FIRST", "U_SECOND"]

    @pytest.mark.anyio()
    async def test_on_call_strategy(self, router, messenger) -> None:
        router.register_team(_team(availability={"on_call": "U_ONCALL"}))

        await router.handle_team_mention("S_PLATFORM", make_mention())

        assert sent_channels(messenger) == ["U_ONCALL"]

    @pytest.mark.anyio()
    async def test_out_of_hours_with_on_call(self, router, messenger, clock, timers) -> None:
        clock.now = datetime(2026, 3, 7, 10, 0, tzinfo=UTC)  # Saturday
        router.register_team(_team(availability={"on_call": "U_ONCALL"}))

        await router.handle_team_mention("S_PLATFORM", make_mention())

        assert sent_channels(messenger) == ["U_ONCALL", "C_SUPPORT"]
        assert "is on call and has been notified" in sent_texts(messenger)[1]
        assert messenger.send_message.call_args.kwargs["thread_ts"] == MENTION_ID
        assert timers.pending(OWNER) == 0

    @pytest.mark.anyio()
    async def test_out_of_hours_without_on_call(self, router, messenger, clock) -> None:
        clock.now = datetime(2026, 3, 2, 20, 0, tzinfo=UTC)

        await router.handle_team_mention("S_PLATFORM", make_mention())

        assert sent_channels(messenger) == ["C_SUPPORT"]
        assert "reviewed during business hours" in sent_texts(messenger)[0]

    @pytest.mark.anyio()
    async def test_urgent_ignores_office_hours(self, router, messenger, clock) -> None:
        clock.now = datetime(2026, 3, 2, 20, 0, tzinfo=UTC)

        await router.handle_team_mention("S_PLATFORM", make_mention(text="urgent: site down"))

        assert sent_channels(messenger) == ["U_MEMBER"]

    @pytest.mark.anyio()
    async def test_timezone_from_first_member(self, messenger, timers, clock) -> None:
        directory = AsyncMock()
        directory.user_timezone.return_value = "Asia/Tokyo"
        directory.user_name.return_value = "Sender"
        router = EscalationRouter(
            messenger,
            timers,
            directory=directory,
            rules=[],
            teams=[_team(availability={"timezone": ""})],
            clock=clock,
        )

        # 10:00 UTC is 19:00 in Tokyo
        await router.handle_team_mention("S_PLATFORM", make_mention())

        directory.user_timezone.assert_awaited_once_with("U_MEMBER")
        assert sent_channels(messenger) == ["C_SUPPORT"]


class TestEscalation:
    @pytest.mark.anyio()
    async def test_unanswered_mention_walks_the_path(self, router, messenger, timers) -> None:
        await router.handle_team_mention("S_PLATFORM", make_mention())
        assert sent_channels(messenger) == ["U_MEMBER"]

        await timers.advance(59)
        assert _escalations(router) == []

        await timers.advance(1)
        assert _escalations(router) == [("U_LEAD", 0)]

        await timers.advance(60)
        assert _escalations(router) == [("U_LEAD", 0), ("U_MANAGER", 1)]

        await timers.advance(600)
        assert sent_channels(messenger) == ["U_MEMBER", "U_LEAD", "U_MANAGER"]
        assert timers.pending(OWNER) == 0
        assert sent_texts(messenger)[1] == "Escalation Level 1: a mention needs your attention"

    @pytest.mark.anyio()
    async def test_escalate_flag_contacts_first_level_immediately(
        self, router, messenger
    ) -> None:
        await router.handle_team_mention("S_PLATFORM", make_mention(), escalate=True)

        assert sent_channels(messenger) == ["U_MEMBER", "U_LEAD"]

    @pytest.mark.anyio()
    async def test_level_beyond_path_is_noop(self, router, messenger) -> None:
        await router.handle_team_mention("S_PLATFORM", make_mention())
        messenger.send_message.reset_mock()

        await router.escalate(MENTION_ID, 2)
        await router.escalate(MENTION_ID, -1)

        messenger.send_message.assert_not_called()

    @pytest.mark.anyio()
    async def test_without_outstanding_notification_is_noop(self, router, messenger) -> None:
        await router.escalate("unknown", 0)
        messenger.send_message.assert_not_called()

    @pytest.mark.anyio()
    async def test_single_level_path_stops(self, router, timers) -> None:
        router.register_team(_team(escalation_path=["U_LEAD"]))

        await router.handle_team_mention("S_PLATFORM", make_mention())
        await timers.advance(600)

        assert _escalations(router) == [("U_LEAD", 0)]

    @pytest.mark.anyio()
    async def test_escalate_flag_runs_a_single_chain(self, router, messenger, timers) -> None:
        await router.handle_team_mention("S_PLATFORM", make_mention(), escalate=True)
        await timers.advance(600)

        assert _escalations(router) == [("U_LEAD", 0), ("U_MANAGER", 1)]
        assert sent_channels(messenger) == ["U_MEMBER", "U_LEAD", "U_MANAGER"]
        assert timers.pending(OWNER) == 0

    @pytest.mark.anyio()
    async def test_level_is_notified_once(self, router, messenger) -> None:
        await router.handle_team_mention("S_PLATFORM", make_mention())

        await router.escalate(MENTION_ID, 0)
        await router.escalate(MENTION_ID, 0)

        assert _escalations(router) == [("U_LEAD", 0)]


class TestTeamsInOneMessage:
    @pytest.fixture
    def router(self, messenger, timers, clock) -> EscalationRouter:
        teams = [
            _team(
                team_id="S_A",
                members=["U_A"],
                escalation_path=["U_A_LEAD", "U_A_MANAGER"],
            ),
            _team(
                team_id="S_B",
                members=["U_B"],
                escalation_path=["U_B_LEAD", "U_B_MANAGER"],
            ),
        ]
        return EscalationRouter(messenger, timers, rules=[], teams=teams, clock=clock)

    async def _tag_both(self, router: EscalationRouter) -> None:
        await router.handle_team_mention("S_A", make_mention(mentioned_id="S_A"))
        await router.handle_team_mention("S_B", make_mention(mentioned_id="S_B"))

    @pytest.mark.anyio()
    async def test_each_team_walks_its_own_path(self, router, timers) -> None:
        await self._tag_both(router)
        await timers.advance(60)

        assert sorted(_escalations(router)) == [("U_A_LEAD", 0), ("U_B_LEAD", 0)]

        await timers.advance(600)
        assert sorted(_escalations(router)) == [
            ("U_A_LEAD", 0),
            ("U_A_MANAGER", 1),
            ("U_B_LEAD", 0),
            ("U_B_MANAGER", 1),
        ]

    @pytest.mark.anyio()
    async def test_ack_stops_only_that_team(self, router, timers) -> None:
        await self._tag_both(router)
        (direct_a,) = [n for n in router.notifications_for(MENTION_ID) if n.recipient_id == "U_A"]
        (direct_b,) = [n for n in router.notifications_for(MENTION_ID) if n.recipient_id == "U_B"]

        await router.acknowledge(direct_a.id, "U_A")
        assert timers.pending(mention_owner(MENTION_ID, "S_A")) == 0
        assert timers.pending(mention_owner(MENTION_ID, "S_B")) == 1

        await timers.advance(600)

        assert _escalations(router) == [("U_B_LEAD", 0), ("U_B_MANAGER", 1)]
        assert direct_b.status == NotificationStatus.SENT

    @pytest.mark.anyio()
    async def test_shutdown_cancels_every_team(self, router, timers) -> None:
        await self._tag_both(router)

        router.shutdown()

        assert timers.pending() == 0


class TestDefaultRules:
    @pytest.fixture
    def router(self, messenger, timers, clock) -> EscalationRouter:
        team = _team(members=["U_MEMBER", "U_PEER"])
        return EscalationRouter(messenger, timers, teams=[team], clock=clock)

    @pytest.mark.anyio()
    async def test_critical_mention_of_member_escalates(self, router, messenger, timers) -> None:
        await router.process(make_mention(mentioned_id="U_MEMBER", text="critical: db down"))

        assert sent_channels(messenger)[:3] == ["U_MEMBER", "U_PEER", "U_LEAD"]
        assert _escalations(router) == [("U_LEAD", 0)]

        await timers.advance(60)
        assert _escalations(router) == [("U_LEAD", 0), ("U_MANAGER", 1)]

    @pytest.mark.anyio()
    async def test_broadcast_without_team_notifies_mentioned_user(
        self, router, messenger
    ) -> None:
        router.unregister_rule("urgent_mention")

        await router.process(make_mention(mentioned_id="U_OUTSIDER", text="critical: db down"))

        assert sent_channels(messenger) == ["U_OUTSIDER"]
        assert _escalations(router) == []


class TestAcknowledge:
    @pytest.mark.anyio()
    async def test_ack_stops_escalation(self, router, messenger, timers) -> None:
        await router.handle_team_mention("S_PLATFORM", make_mention())
        await timers.advance(60)
        (lead,) = [n for n in router.notifications_for(MENTION_ID) if n.recipient_id == "U_LEAD"]

        await router.acknowledge(lead.id, "U_LEAD")
        await timers.advance(600)

        assert _escalations(router) == [("U_LEAD", 0)]
        assert all(
            n.status == NotificationStatus.ACKNOWLEDGED
            for n in router.notifications_for(MENTION_ID)
        )
        assert timers.pending(OWNER) == 0
        assert sent_texts(messenger)[-1].endswith("Mention acknowledged by <@U_LEAD>")
        assert sent_channels(messenger)[-1] == "C_SUPPORT"

    @pytest.mark.anyio()
    async def test_ack_before_response_time(self, router, messenger, timers) -> None:
        await router.handle_team_mention("S_PLATFORM", make_mention())
        (direct,) = router.notifications_for(MENTION_ID)

        await router.acknowledge(direct.id, "U_MEMBER")
        await timers.advance(600)

        assert _escalations(router) == []
        assert direct.acknowledged_at is not None

    @pytest.mark.anyio()
    async def test_ack_is_idempotent(self, router, messenger, clock) -> None:
        await router.handle_team_mention("S_PLATFORM", make_mention())
        (direct,) = router.notifications_for(MENTION_ID)

        await router.acknowledge(direct.id, "U_MEMBER")
        first_ack = direct.acknowledged_at
        clock.advance(30)
        await router.acknowledge(direct.id, "U_MEMBER")

        assert direct.acknowledged_at == first_ack
        assert messenger.send_message.call_count == 2

    @pytest.mark.anyio()
    async def test_unknown_notification(self, router, messenger) -> None:
        await router.acknowledge("mention_missing", "U_X")
        messenger.send_message.assert_not_called()

    @pytest.mark.anyio()
    async def test_find_by_delivery(self, router) -> None:
        await router.handle_team_mention("S_PLATFORM", make_mention())
        (direct,) = router.notifications_for(MENTION_ID)

        assert router.find_by_delivery("U_MEMBER", direct.delivery_ts) is direct
        assert router.find_by_delivery("C_SUPPORT", direct.delivery_ts) is None


class TestStatsAndCleanup:
    @pytest.mark.anyio()
    async def test_stats(self, router, clock) -> None:
        router.register_rule({"id": "n", "actions": [{"type": "notify"}]})
        await router.process(make_mention(message_ts="1.1"))
        await router.process(make_mention(message_ts="1.2"))
        await router.process(make_mention(mentioned_id="U_OTHER", message_ts="1.3"))
        (notification,) = router.notifications_for("1.1")
        clock.advance(90)
        await router.acknowledge(notification.id, "U_TARGET")

        stats = router.get_stats("hour")

        assert stats.total_mentions == 3
        assert stats.unique_users == 2
        assert stats.top_mentioned_users == [("U_TARGET", 2), ("U_OTHER", 1)]
        assert stats.average_response_seconds == 90
        assert stats.escalation_rate == 0.0

    @pytest.mark.anyio()
    async def test_stats_window(self, router, clock) -> None:
        await router.process(make_mention())
        clock.advance(2 * 3600)

        assert router.get_stats("hour").total_mentions == 0
        assert router.get_stats("day").total_mentions == 1

    def test_unknown_timeframe(self, router) -> None:
        with pytest.raises(ValueError, match="Unknown timeframe"):
            router.get_stats("month")

    @pytest.mark.anyio()
    async def test_escalation_rate(self, router) -> None:
        await router.handle_team_mention("S_PLATFORM", make_mention(), escalate=True)

        assert router.get_stats("hour").escalation_rate == 1.0

    @pytest.mark.anyio()
    async def test_cleanup_expires_overdue_notifications(self, router, clock) -> None:
        router.register_rule({"id": "n", "actions": [{"type": "notify"}]})
        await router.process(make_mention())
        (notification,) = router.notifications_for(MENTION_ID)

        clock.advance(29 * 60)
        router.cleanup()
        assert notification.status == NotificationStatus.SENT

        clock.advance(2 * 60)
        router.cleanup()
        assert notification.status == NotificationStatus.EXPIRED

    @pytest.mark.anyio()
    async def test_cleanup_prunes_old_history(self, router, clock) -> None:
        router.register_rule({"id": "n", "actions": [{"type": "notify"}]})
        await router.process(make_mention())

        clock.advance(8 * 24 * 3600)
        router.cleanup()

        assert router.notifications_for(MENTION_ID) == []
        assert router.get_mention(MENTION_ID) is None
        assert router.get_stats("week").total_mentions == 0

    def test_background_sweep(self, router, timers) -> None:
        router.start_background_tasks()
        router.start_background_tasks()
        assert timers.pending(SWEEP_OWNER) == 1

        router.shutdown()
        assert timers.pending(SWEEP_OWNER) == 0

    @pytest.mark.anyio()
    async def test_shutdown_cancels_escalation_timers(self, router, timers) -> None:
        await router.handle_team_mention("S_PLATFORM", make_mention())

        router.shutdown()

        assert timers.pending(OWNER) == 0
