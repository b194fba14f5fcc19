import logging

from channels.generic.websocket import AsyncJsonWebsocketConsumer

from .services import user_group_name

logger = logging.getLogger(__name__)


class NotificationConsumer(AsyncJsonWebsocketConsumer):
    """
    Per-user notification socket (ws/notifications/)

    The session user (AuthMiddlewareStack) joins ``user_<id>``; the
    notification service group_sends to it. Anonymous sockets are refused.
    """

    async def connect(self):
        user = self.scope.get('user')
        if user is None or not user.is_authenticated:
            await self.close(code=4401)
            return

        self.group_name = user_group_name(user.pk)
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()
        await self.send_json({'type': 'connected', 'user_id': user.pk})
        logger.debug("WebSocket connected for user %s", user.pk)

    async def disconnect(self, code):
        if hasattr(self, 'group_name'):
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def receive_json(self, content, **kwargs):
        # Keep-alive from the browser
        if content.get('type') == 'ping':
            await self.send_json({'type': 'pong'})

    async def notification_message(self, event):
        await self.send_json({'type': 'notification', 'notification': event['notification']})
