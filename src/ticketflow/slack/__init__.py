"""Slack integration: Web API collaborators and message contracts.

The Bolt app, event listeners and slash commands live in
:mod:`ticketflow.slack.app`, :mod:`ticketflow.slack.listeners` and
:mod:`ticketflow.slack.commands`; they depend on the core services and are
imported directly by the application entry point.
"""

from ticketflow.slack.client import SlackDirectory, SlackMessenger
from ticketflow.slack.models import DeliveryRef, Directory, MessageContent, Messenger

__all__ = [
    "DeliveryRef",
    "Directory",
    "MessageContent",
    "Messenger",
    "SlackDirectory",
    "SlackMessenger",
]
