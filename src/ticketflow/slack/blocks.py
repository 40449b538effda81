"""Block Kit message builders for workflow and mention notifications.

Pure functions that return Block Kit block dicts. These functions have no
side effects and are easy to test.  Callers pair the blocks with a
plain-text fallback in a :class:`~ticketflow.slack.models.MessageContent`.
"""

from __future__ import annotations

from typing import Any

STATUS_EMOJI: dict[str, str] = {
    "started": ":arrow_forward:",
    "completed": ":white_check_mark:",
    "failed": ":x:",
    "cancelled": ":no_entry_sign:",
}

PRIORITY_EMOJI: dict[str, str] = {
    "low": ":large_blue_circle:",
    "medium": ":large_yellow_circle:",
    "high": ":large_orange_circle:",
    "critical": ":red_circle:",
}

ESCALATION_EMOJI = ":rotating_light:"
OUT_OF_OFFICE_EMOJI = ":crescent_moon:"
ACKNOWLEDGED_EMOJI = ":ballot_box_with_check:"
ACK_REACTION = "white_check_mark"


def user_mention(user_id: str) -> str:
    """Format a Slack user id as an ``<@U123>`` mention."""
    return f"<@{user_id}>"


def message_permalink(channel: str, message_ts: str) -> str:
    """Build the archive permalink for a message."""
    return f"https://slack.com/archives/{channel}/p{message_ts.replace('.', '')}"


def substitute_variables(template: str, data: dict[str, Any]) -> str:
    """Replace ``{{key}}`` placeholders with values from *data*.

    Unknown or empty keys are left untouched so the gap is visible.
    """
    out: list[str] = []
    rest = template
    while "{{" in rest:
        before, _, after = rest.partition("{{")
        key, closed, remainder = after.partition("}}")
        if not closed:
            break
        out.append(before)
        value = data.get(key.strip())
        out.append(str(value) if value not in (None, "") else "{{" + key + "}}")
        rest = remainder
    out.append(rest)
    return "".join(out)


def build_workflow_status_blocks(
    workflow_name: str,
    status: str,
    execution_id: str,
    details: str | None = None,
) -> list[dict[str, Any]]:
    """Build Block Kit blocks announcing a workflow lifecycle change.

    Args:
        workflow_name: Display name of the workflow.
        status: One of ``started``, ``completed``, ``failed``, ``cancelled``.
        execution_id: The execution the notice is about.
        details: Optional plain-language explanation (never a traceback).

    Returns:
        List of Block Kit block dicts.
    """
    emoji = STATUS_EMOJI.get(status, ":information_source:")
    blocks: list[dict[str, Any]] = [
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"{emoji} Workflow *{workflow_name}* {status}"},
        },
        {
            "type": "context",
            "elements": [{"type": "mrkdwn", "text": f"Execution ID: `{execution_id}`"}],
        },
    ]
    if details:
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": f"_{details}_"}})
    return blocks


def build_mention_notification_blocks(
    mentioned_by_name: str,
    channel: str,
    message_ts: str,
    text: str,
    priority: str,
    category: str,
) -> list[dict[str, Any]]:
    """Build Block Kit blocks for a direct mention notification.

    Args:
        mentioned_by_name: Display name of the sender.
        channel: Channel the mention happened in.
        message_ts: Timestamp of the mentioning message.
        text: The raw message text.
        priority: Derived priority (``low`` .. ``critical``).
        category: Derived category.

    Returns:
        List of Block Kit block dicts.
    """
    emoji = PRIORITY_EMOJI.get(priority, PRIORITY_EMOJI["medium"])
    return [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f"Mention from {mentioned_by_name}"},
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Priority:*\n{emoji} {priority}"},
                {"type": "mrkdwn", "text": f"*Category:*\n{category}"},
            ],
        },
        {"type": "section", "text": {"type": "mrkdwn", "text": f">{text}"}},
        {
            "type": "context",
            "elements": [
                {
                    "type": "mrkdwn",
                    "text": f"<{message_permalink(channel, message_ts)}|View message>",
                },
            ],
        },
    ]


def build_escalation_blocks(
    level: int,
    channel: str,
    message_ts: str,
    text: str,
) -> list[dict[str, Any]]:
    """Build Block Kit blocks for an escalation notice.

    Args:
        level: Zero-based position in the team's escalation path.
        channel: Channel of the unanswered mention.
        message_ts: Timestamp of the unanswered mention.
        text: The original mention text, quoted for context.

    Returns:
        List of Block Kit block dicts.
    """
    blocks: list[dict[str, Any]] = [
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"{ESCALATION_EMOJI} *Escalation Level {level + 1}*\n\n"
                    "A mention requires your attention as previous team members "
                    "have not responded."
                ),
            },
        },
    ]
    if text:
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": f">{text}"}})
    blocks.append(
        {
            "type": "context",
            "elements": [
                {
                    "type": "mrkdwn",
                    "text": f"<{message_permalink(channel, message_ts)}|View message>",
                },
            ],
        }
    )
    return blocks


def build_out_of_office_text(team_name: str, on_call: str | None) -> str:
    """Build the out-of-office notice posted in the mentioning thread."""
    message = f"{OUT_OF_OFFICE_EMOJI} Team *{team_name}* is currently out of office."
    if on_call:
        message += f" However, {user_mention(on_call)} is on call and has been notified."
    else:
        message += " Your message will be reviewed during business hours."
    return message


def build_acknowledgment_text(responder_id: str) -> str:
    """Build the confirmation posted when a mention is acknowledged."""
    return f"{ACKNOWLEDGED_EMOJI} Mention acknowledged by {user_mention(responder_id)}"


def build_team_mention_blocks(
    team_name: str,
    mentioned_by: str,
    text: str,
    channel: str,
) -> list[dict[str, Any]]:
    """Build Block Kit blocks for a broadcast to every member of a team."""
    return [
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"*Team {team_name}* was mentioned by {user_mention(mentioned_by)}:\n>{text}"
                ),
            },
        },
        {
            "type": "context",
            "elements": [{"type": "mrkdwn", "text": f"Respond to mention in <#{channel}>"}],
        },
    ]


def build_mention_stats_blocks(
    timeframe: str,
    total_mentions: int,
    unique_users: int,
    top_mentioned_users: list[tuple[str, int]],
    average_response_seconds: float | None,
    escalation_rate: float,
) -> list[dict[str, Any]]:
    """Build Block Kit blocks summarising mention statistics."""
    response = "N/A"
    if average_response_seconds is not None:
        response = f"{average_response_seconds / 60:.1f} min"
    blocks: list[dict[str, Any]] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f"Mention stats (last {timeframe})"},
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Mentions:*\n{total_mentions}"},
                {"type": "mrkdwn", "text": f"*Users mentioned:*\n{unique_users}"},
                {"type": "mrkdwn", "text": f"*Avg response:*\n{response}"},
                {"type": "mrkdwn", "text": f"*Escalation rate:*\n{escalation_rate:.0%}"},
            ],
        },
    ]
    if top_mentioned_users:
        lines = "\n".join(f"- {user_mention(uid)}: {count}" for uid, count in top_mentioned_users)
        blocks.append(
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*Most mentioned:*\n{lines}"}}
        )
    return blocks


def build_ack_hint_block(notification_id: str) -> dict[str, Any]:
    """Context block telling the recipient how to acknowledge a notification."""
    return {
        "type": "context",
        "elements": [
            {
                "type": "mrkdwn",
                "text": (
                    f"React with :{ACK_REACTION}: or run `/ack {notification_id}` to acknowledge"
                ),
            },
        ],
    }
