"""
实时协作模块
Socket.IO 事件处理：握手认证、房间加入/离开、编辑与在线状态转发
"""
import logging

from flask import request
from flask_socketio import emit, join_room, leave_room

from sketchdb.src.exceptions import (
    AccessDenied,
    AuthenticationError,
    CollaborationError,
    ConnectionRejected,
    DiagramNotFound,
    InvalidRequest,
    RateLimited,
)
from .diagram_store import resolve_permission

logger = logging.getLogger(__name__)

NAMESPACE = '/'
NODE_EVENTS = ('node-add', 'node-update', 'node-delete', 'node-move')
EDGE_EVENTS = ('edge-add', 'edge-delete')


def room_name(diagram_id):
    return f"diagram:{diagram_id}"


def _diagram_id(data):
    diagram_id = data.get('diagramId') if isinstance(data, dict) else None
    if diagram_id in (None, ''):
        raise InvalidRequest()
    return str(diagram_id)


def _left_payload(member):
    return {'id': member.sid, 'userId': member.user_id, 'username': member.username}


class CollaborationTasks:
    """后台任务：光标批量下发与失效连接清理"""

    def __init__(self, socketio, registry, sweep_interval):
        self.socketio = socketio
        self.registry = registry
        self.sweep_interval = sweep_interval
        self._started = False

    def flush_cursors(self):
        """下发到期的光标位置，返回发送条数"""
        due = self.registry.flush_cursors()
        for diagram_id, sid, payload in due:
            self.socketio.emit('cursor-update', payload, to=room_name(diagram_id),
                               skip_sid=sid, namespace=NAMESPACE)
        return len(due)

    def is_alive(self, sid):
        return self.socketio.server.manager.is_connected(sid, NAMESPACE)

    def sweep(self):
        """清理传输层已断开但没有收到 disconnect 的连接"""
        removed = self.registry.sweep(self.is_alive)
        for diagram_id, member in removed:
            self.socketio.emit('user-left', _left_payload(member), to=room_name(diagram_id),
                               namespace=NAMESPACE)
        if removed:
            logger.info(f"定时清理移除了 {len(removed)} 个失效成员")
        return removed

    def _cursor_loop(self):
        while True:
            self.socketio.sleep(self.registry.cursor_interval)
            try:
                self.flush_cursors()
            except Exception as e:
                logger.error(f"光标下发失败: {e}")

    def _sweep_loop(self):
        while True:
            self.socketio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"定时清理失败: {e}")

    def start(self):
        if self._started:
            return
        self._started = True
        self.socketio.start_background_task(self._cursor_loop)
        self.socketio.start_background_task(self._sweep_loop)
        logger.info("协作后台任务已启动")


def init_collaboration(socketio, registry, diagram_store, user_manager, token_service,
                       sweep_interval=30):
    """注册协作事件处理函数，返回后台任务对象"""
    tasks = CollaborationTasks(socketio, registry, sweep_interval)

    def authenticate(token):
        user_id = token_service.verify(token)
        user = user_manager.get_user(user_id)
        if not user:
            raise AuthenticationError('user-not-found')
        if not user.get('is_verified'):
            raise AuthenticationError('unverified')
        return user

    def send_error(err):
        logger.warning(f"拒绝 {request.sid} 的操作: {err.error_type} - {err.message}")
        emit('error', err.to_dict())

    def load_diagram(diagram_id):
        diagram = diagram_store.get_diagram(diagram_id)
        if diagram is None:
            diagram = diagram_store.get_diagram_by_slug(diagram_id)
        if diagram is None:
            raise DiagramNotFound()
        return diagram

    def guard(data, need_edit, notify_rate):
        """
        校验发送者是房间成员（编辑类事件还需 edit 权限）并计入速率限制

        Returns:
            (diagram_id, member)；事件应被静默丢弃时返回 None
        """
        sid = request.sid
        diagram_id = _diagram_id(data)
        if need_edit:
            member = registry.require_edit(sid, diagram_id)
        else:
            member = registry.get_member(sid, diagram_id)
            if member is None:
                return None

        if not registry.check_rate(sid):
            if notify_rate and registry.take_rate_notice(sid):
                raise RateLimited()
            return None
        return diagram_id, member

    @socketio.on('connect')
    def handle_connect(auth=None):
        token = auth.get('token') if isinstance(auth, dict) else None
        token = token or request.args.get('token')
        try:
            user = authenticate(token)
            registry.register_connection(request.sid, user)
        except (AuthenticationError, ConnectionRejected) as e:
            logger.warning(f"拒绝连接 {request.sid}: {e.message}")
            raise ConnectionRefusedError(e.to_dict())

        logger.info(f"用户连接: {user.get('username')} ({request.sid}) "
                    f"[{len(registry.connections)} total]")

    @socketio.on('disconnect')
    def handle_disconnect(reason=None):
        sid = request.sid
        connection = registry.get_connection(sid)
        diagram_id, member = registry.unregister(sid)
        if member is not None:
            socketio.emit('user-left', _left_payload(member), to=room_name(diagram_id),
                          skip_sid=sid, namespace=NAMESPACE)
        if connection:
            logger.info(f"用户断开: {connection.username} ({sid}) {reason or ''}".rstrip())

    @socketio.on('join-diagram')
    def handle_join_diagram(data):
        sid = request.sid
        connection = registry.get_connection(sid)
        if connection is None:
            return
        try:
            diagram = load_diagram(_diagram_id(data))
            diagram_id = str(diagram['id'])
            permission = resolve_permission(diagram, connection.user_id)
            if permission is None:
                raise AccessDenied()
            member, previous_id, previous_member, created = registry.join(sid, diagram_id, permission)
        except CollaborationError as e:
            send_error(e)
            return

        if previous_id:
            leave_room(room_name(previous_id))
            if previous_member is not None:
                emit('user-left', _left_payload(previous_member), to=room_name(previous_id))

        room = room_name(diagram_id)
        join_room(room)
        emit('joined-diagram', {
            'diagramId': diagram_id,
            'permission': permission,
            'users': [m.to_dict() for m in registry.members(diagram_id)],
            'ownerUsername': diagram.get('owner_username'),
            'diagramName': diagram.get('name'),
        })
        if created:
            emit('user-joined', {
                'id': sid,
                'userId': connection.user_id,
                'username': connection.username,
                'permission': permission,
            }, to=room, include_self=False)
        logger.info(f"{connection.username} 加入图表 {diagram_id}，权限 {permission}")

    @socketio.on('leave-diagram')
    def handle_leave_diagram(data):
        sid = request.sid
        try:
            diagram_id = _diagram_id(data)
        except InvalidRequest:
            return
        member = registry.leave(sid, diagram_id)
        leave_room(room_name(diagram_id))
        if member is not None:
            emit('user-left', _left_payload(member), to=room_name(diagram_id))
            logger.info(f"{member.username} 离开图表 {diagram_id}")

    @socketio.on('cursor-move')
    def handle_cursor_move(data):
        try:
            diagram_id = _diagram_id(data)
        except InvalidRequest:
            return
        if registry.get_member(request.sid, diagram_id) is None:
            return
        registry.offer_cursor(request.sid, diagram_id, data.get('x'), data.get('y'))

    @socketio.on('sync-update')
    def handle_sync_update(data):
        try:
            if not isinstance(data, dict) or data.get('update') is None:
                raise InvalidRequest('Sync update payload required')
            guarded = guard(data, need_edit=True, notify_rate=True)
        except CollaborationError as e:
            send_error(e)
            return
        if guarded is None:
            return
        diagram_id, member = guarded
        emit('sync-update', {
            'update': data['update'],
            'origin': member.username,
        }, to=room_name(diagram_id), include_self=False)

    @socketio.on('awareness-update')
    def handle_awareness_update(data):
        try:
            guarded = guard(data, need_edit=False, notify_rate=False)
        except InvalidRequest:
            return
        if guarded is None:
            return
        diagram_id, member = guarded
        emit('awareness-update', {
            'userId': member.user_id,
            'username': member.username,
            'awareness': data.get('awareness'),
        }, to=room_name(diagram_id), include_self=False)

    def make_node_handler(event):
        def handler(data):
            try:
                guarded = guard(data, need_edit=True, notify_rate=True)
            except CollaborationError as e:
                send_error(e)
                return
            if guarded is None:
                return
            diagram_id, member = guarded
            emit(event, {
                'node': data.get('node'),
                'nodeId': data.get('nodeId'),
                'changes': data.get('changes'),
                'position': data.get('position'),
                'userId': member.user_id,
                'username': member.username,
            }, to=room_name(diagram_id), include_self=False)
        return handler

    def make_edge_handler(event):
        def handler(data):
            try:
                guarded = guard(data, need_edit=True, notify_rate=True)
            except CollaborationError as e:
                send_error(e)
                return
            if guarded is None:
                return
            diagram_id, member = guarded
            emit(event, {
                'edge': data.get('edge'),
                'edgeId': data.get('edgeId'),
                'userId': member.user_id,
                'username': member.username,
            }, to=room_name(diagram_id), include_self=False)
        return handler

    for event in NODE_EVENTS:
        socketio.on_event(event, make_node_handler(event))
    for event in EDGE_EVENTS:
        socketio.on_event(event, make_edge_handler(event))

    @socketio.on('selection-change')
    def handle_selection_change(data):
        try:
            guarded = guard(data, need_edit=False, notify_rate=False)
        except InvalidRequest:
            return
        if guarded is None:
            return
        diagram_id, member = guarded
        emit('selection-change', {
            'userId': member.user_id,
            'username': member.username,
            'selectedNodes': data.get('selectedNodes') or [],
            'selectedEdges': data.get('selectedEdges') or [],
        }, to=room_name(diagram_id), include_self=False)

    @socketio.on('request-state')
    def handle_request_state(data):
        sid = request.sid
        try:
            diagram_id = _diagram_id(data)
        except InvalidRequest:
            return
        member = registry.get_member(sid, diagram_id)
        if member is None:
            return
        provider = registry.pick_state_provider(sid, diagram_id)
        if provider is None:
            return
        emit('provide-state', {
            'requesterId': sid,
            'requesterUsername': member.username,
        }, to=provider)

    @socketio.on('state-response')
    def handle_state_response(data):
        """提供者把当前图表状态直接发给请求者（需同在一个房间）"""
        if not isinstance(data, dict):
            return
        sid = request.sid
        connection = registry.get_connection(sid)
        target = data.get('targetId')
        if connection is None or not connection.diagram_id or not target:
            return
        if registry.get_member(target, connection.diagram_id) is None:
            return
        emit('state-provided', {
            'nodes': data.get('nodes') or [],
            'edges': data.get('edges') or [],
        }, to=target)

    return tasks
