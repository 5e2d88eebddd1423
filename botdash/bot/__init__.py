"""
Bot — сессия бота (соединение, отправка рассылок).
"""

from botdash.bot.session import BotSession, BotState, ObservedGroup

__all__ = [
    "BotSession",
    "BotState",
    "ObservedGroup",
]
