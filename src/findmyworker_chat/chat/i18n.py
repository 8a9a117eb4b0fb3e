from __future__ import annotations

from typing import Any

from .constants import UserRole

DEFAULT_LOCALE = "es"

_TRANSLATIONS: dict[str, dict[str, str]] = {
    "es": {
        "auth.sessionExpired": "Tu sesión ha expirado. Inicia sesión de nuevo.",
        "chat.noPermission": "No tienes permiso para acceder a este chat.",
        "chat.orderNotFound": "La orden no existe o no está disponible.",
        "chat.connectionError": "Error de conexión",
        "chat.connectionFailed": "No se pudo conectar al chat. Recarga la página.",
        "chat.sendError": "Error al enviar el mensaje",
        "chat.serverError": "Error del servidor de chat",
        "chat.errorLoadingHistory": "No se pudo cargar el historial del chat.",
        "chat.title": "Chat",
        "chat.orderNumber": "Orden #{number}",
        "chat.connected": "Conectado",
        "chat.reconnecting": "Reconectando...",
        "chat.disconnected": "Desconectado",
        "chat.retry": "Reintentar",
        "chat.chatNotAvailable": "El chat no está disponible",
        "chat.waitForAcceptance": "El chat se activará cuando el trabajador acepte la orden.",
        "chat.orderClosed": "Esta orden está cerrada.",
        "chat.typeMessage": "Escribe un mensaje...",
        "chat.chatClosed": "Chat cerrado",
        "chat.chatClosedReason": "El chat solo está disponible para órdenes activas.",
        "chat.waitingConnection": "Esperando conexión...",
        "chat.loadingMessages": "Cargando mensajes...",
        "chat.noMessages": "No hay mensajes todavía",
        "chat.startConversation": "Inicia la conversación",
        "chat.send": "Enviar",
        "roles.client": "Cliente",
        "roles.worker": "Trabajador",
        "roles.admin": "Administrador",
    },
    "en": {
        "auth.sessionExpired": "Your session has expired. Please log in again.",
        "chat.noPermission": "You do not have permission to access this chat.",
        "chat.orderNotFound": "The order does not exist or is not available.",
        "chat.connectionError": "Connection error",
        "chat.connectionFailed": "Could not connect to the chat. Reload the page.",
        "chat.sendError": "Error sending the message",
        "chat.serverError": "Chat server error",
        "chat.errorLoadingHistory": "Could not load the chat history.",
        "chat.title": "Chat",
        "chat.orderNumber": "Order #{number}",
        "chat.connected": "Connected",
        "chat.reconnecting": "Reconnecting...",
        "chat.disconnected": "Disconnected",
        "chat.retry": "Retry",
        "chat.chatNotAvailable": "Chat is not available",
        "chat.waitForAcceptance": "Chat opens once the worker accepts the order.",
        "chat.orderClosed": "This order is closed.",
        "chat.typeMessage": "Type a message...",
        "chat.chatClosed": "Chat closed",
        "chat.chatClosedReason": "Chat is only available for active orders.",
        "chat.waitingConnection": "Waiting for connection...",
        "chat.loadingMessages": "Loading messages...",
        "chat.noMessages": "No messages yet",
        "chat.startConversation": "Start the conversation",
        "chat.send": "Send",
        "roles.client": "Client",
        "roles.worker": "Worker",
        "roles.admin": "Admin",
    },
}


def translate(key: str, locale: str = DEFAULT_LOCALE, **params: Any) -> str:
    """Look up ``key``; unknown keys (e.g. raw server text) come back unchanged."""
    table = _TRANSLATIONS.get(locale) or _TRANSLATIONS[DEFAULT_LOCALE]
    template = table.get(key)
    if template is None:
        return key
    if not params:
        return template
    try:
        return template.format(**params)
    except (KeyError, IndexError, ValueError):
        return template


def role_label(role: str, locale: str = DEFAULT_LOCALE) -> str:
    if not role:
        return ""
    try:
        member = UserRole(role.strip().upper())
    except ValueError:
        return role
    return translate(f"roles.{member.value.lower()}", locale)
