"""
协作会话注册表

Tracks authenticated connections, diagram rooms, per-connection event rate
windows and pending cursor positions. One instance is created per server
process and handed to the Socket.IO handlers; tests build their own with a
fake clock.
"""
import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Tuple

from sketchdb.src.exceptions import AccessDenied, ConnectionRejected, RoomFullError

logger = logging.getLogger(__name__)

EDIT = 'edit'


class Member:
    """A connection's seat in a room"""

    def __init__(self, sid: str, user_id, username: str, permission: str, joined_at: float):
        self.sid = sid
        self.user_id = user_id
        self.username = username
        self.permission = permission
        self.cursor: Optional[Dict[str, float]] = None
        self.joined_at = joined_at

    @property
    def can_edit(self) -> bool:
        return self.permission == EDIT

    def to_dict(self) -> Dict:
        return {
            'id': self.sid,
            'userId': self.user_id,
            'username': self.username,
            'permission': self.permission,
            'cursor': self.cursor,
        }


class Connection:
    def __init__(self, sid: str, user: Dict, connected_at: float):
        self.sid = sid
        self.user_id = user['id']
        self.username = user.get('username') or ''
        self.diagram_id: Optional[str] = None
        self.connected_at = connected_at


class RateWindow:
    def __init__(self, reset_at: float):
        self.count = 0
        self.reset_at = reset_at
        self.notified = False


class SessionRegistry:

    def __init__(self, max_users_per_diagram: int = 10, max_total_connections: int = 150,
                 cursor_throttle_ms: int = 50, event_rate_limit: int = 30,
                 event_rate_window_ms: int = 1000, rate_state_ttl_seconds: int = 60,
                 clock: Optional[Callable[[], float]] = None):
        self.max_users_per_diagram = max_users_per_diagram
        self.max_total_connections = max_total_connections
        self.cursor_interval = cursor_throttle_ms / 1000.0
        self.event_rate_limit = event_rate_limit
        self.event_rate_window = event_rate_window_ms / 1000.0
        self.rate_state_ttl = rate_state_ttl_seconds
        self.clock = clock or time.monotonic

        self.connections: Dict[str, Connection] = {}
        self.rooms: Dict[str, 'OrderedDict[str, Member]'] = {}
        self._rates: Dict[str, RateWindow] = {}
        self._pending_cursors: Dict[str, Tuple[str, Dict]] = {}
        self._last_cursor_sent: Dict[str, float] = {}
        # 线程模式下处理函数并发执行，所有状态读写都持有此锁
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config, clock=None) -> 'SessionRegistry':
        return cls(clock=clock, **config.get_collab_limits())

    # ------------------------------------------------------------ connections

    def register_connection(self, sid: str, user: Dict) -> Connection:
        with self._lock:
            if sid not in self.connections and len(self.connections) >= self.max_total_connections:
                logger.warning(f"连接数已达上限 {self.max_total_connections}，拒绝 {sid}")
                raise ConnectionRejected()
            connection = Connection(sid, user, self.clock())
            self.connections[sid] = connection
            return connection

    def get_connection(self, sid: str) -> Optional[Connection]:
        return self.connections.get(sid)

    def unregister(self, sid: str) -> Tuple[Optional[str], Optional[Member]]:
        """Drop a connection and everything it holds; returns the room it left"""
        with self._lock:
            connection = self.connections.pop(sid, None)
            diagram_id = connection.diagram_id if connection else None
            member = self.leave(sid, diagram_id) if diagram_id else None
            self._rates.pop(sid, None)
            self._pending_cursors.pop(sid, None)
            self._last_cursor_sent.pop(sid, None)
            return diagram_id, member

    # ------------------------------------------------------------------ rooms

    def members(self, diagram_id: str) -> List[Member]:
        with self._lock:
            return list(self.rooms.get(diagram_id, {}).values())

    def get_member(self, sid: str, diagram_id: str) -> Optional[Member]:
        with self._lock:
            return self.rooms.get(diagram_id, {}).get(sid)

    def join(self, sid: str, diagram_id: str, permission: str) -> Tuple[Member, Optional[str], Optional[Member], bool]:
        """
        Seat ``sid`` in the room for ``diagram_id``.

        Returns the member, the previous room and member when the connection
        was moved out of another room (so the caller can notify it), and
        whether the seat is new.

        Raises:
            RoomFullError: room is at capacity and ``sid`` is not already seated
        """
        with self._lock:
            connection = self.connections[sid]
            room = self.rooms.get(diagram_id)
            # 每个连接占一个座位，同一用户的多个标签页分别计数
            if room is not None and sid not in room and len(room) >= self.max_users_per_diagram:
                raise RoomFullError(self.max_users_per_diagram)

            previous_id, previous_member = None, None
            if connection.diagram_id and connection.diagram_id != diagram_id:
                previous_id = connection.diagram_id
                previous_member = self.leave(sid, previous_id)

            room = self.rooms.setdefault(diagram_id, OrderedDict())
            member = room.get(sid)
            created = member is None
            if created:
                member = Member(sid, connection.user_id, connection.username, permission, self.clock())
                room[sid] = member
            else:
                member.permission = permission
            connection.diagram_id = diagram_id
            return member, previous_id, previous_member, created

    def leave(self, sid: str, diagram_id: Optional[str] = None) -> Optional[Member]:
        """Remove ``sid`` from a room; the room is destroyed once empty"""
        with self._lock:
            connection = self.connections.get(sid)
            if diagram_id is None and connection:
                diagram_id = connection.diagram_id
            if diagram_id is None:
                return None

            room = self.rooms.get(diagram_id)
            member = room.pop(sid, None) if room is not None else None
            if room is not None and not room:
                del self.rooms[diagram_id]
                logger.debug(f"房间 {diagram_id} 已清空并销毁")

            if connection and connection.diagram_id == diagram_id:
                connection.diagram_id = None
            self._pending_cursors.pop(sid, None)
            self._last_cursor_sent.pop(sid, None)
            return member

    def require_member(self, sid: str, diagram_id: str) -> Member:
        member = self.get_member(sid, diagram_id)
        if member is None:
            raise AccessDenied('Not a member of this diagram')
        return member

    def require_edit(self, sid: str, diagram_id: str) -> Member:
        member = self.require_member(sid, diagram_id)
        if not member.can_edit:
            raise AccessDenied('Edit permission required')
        return member

    def pick_state_provider(self, sid: str, diagram_id: str) -> Optional[str]:
        """Any other member may answer a late joiner's state request"""
        with self._lock:
            for other in self.rooms.get(diagram_id, {}):
                if other != sid:
                    return other
            return None

    # ------------------------------------------------------------- rate limit

    def check_rate(self, sid: str) -> bool:
        """Count one event against the fixed window; False once the quota is spent"""
        with self._lock:
            now = self.clock()
            window = self._rates.get(sid)
            if window is None or now >= window.reset_at:
                window = RateWindow(now + self.event_rate_window)
                self._rates[sid] = window
            if window.count >= self.event_rate_limit:
                return False
            window.count += 1
            return True

    def take_rate_notice(self, sid: str) -> bool:
        """True the first time per window, so a flooding client is told only once"""
        with self._lock:
            window = self._rates.get(sid)
            if window is None or window.notified:
                return False
            window.notified = True
            return True

    # ----------------------------------------------------------------- cursor

    def offer_cursor(self, sid: str, diagram_id: str, x, y) -> Member:
        with self._lock:
            member = self.require_member(sid, diagram_id)
            member.cursor = {'x': x, 'y': y}
            self._pending_cursors[sid] = (diagram_id, {
                'id': sid,
                'username': member.username,
                'x': x,
                'y': y,
            })
            return member

    def flush_cursors(self) -> List[Tuple[str, str, Dict]]:
        """
        Pending cursor positions that are due, as (diagram_id, sid, payload).

        Newer positions overwrite older ones while a connection is inside its
        throttle interval, so only the latest is ever sent.
        """
        with self._lock:
            now = self.clock()
            due = []
            for sid, (diagram_id, payload) in list(self._pending_cursors.items()):
                last = self._last_cursor_sent.get(sid)
                if last is not None and now - last < self.cursor_interval:
                    continue
                member = self.get_member(sid, diagram_id)
                self._pending_cursors.pop(sid, None)
                if member is None:
                    continue
                self._last_cursor_sent[sid] = now
                due.append((diagram_id, sid, payload))
            return due

    # ------------------------------------------------------------------ sweep

    def sweep(self, is_alive: Callable[[str], bool]) -> List[Tuple[str, Member]]:
        """
        Reap connections whose transport is gone, empty rooms and stale
        rate windows. Returns the (diagram_id, member) pairs removed.
        """
        with self._lock:
            removed = []
            for sid in list(self.connections):
                if is_alive(sid):
                    continue
                diagram_id, member = self.unregister(sid)
                logger.info(f"清理失效连接 {sid}")
                if member is not None:
                    removed.append((diagram_id, member))

            for diagram_id, room in list(self.rooms.items()):
                for sid in [sid for sid in room if sid not in self.connections]:
                    removed.append((diagram_id, room.pop(sid)))
                if not room:
                    del self.rooms[diagram_id]

            now = self.clock()
            for sid, window in list(self._rates.items()):
                if now > window.reset_at + self.rate_state_ttl:
                    del self._rates[sid]
            return removed

    def stats(self) -> Dict:
        with self._lock:
            return {
                'totalConnections': len(self.connections),
                'activeRooms': len(self.rooms),
                'rooms': {diagram_id: len(room) for diagram_id, room in self.rooms.items()},
                'limits': {
                    'maxUsersPerDiagram': self.max_users_per_diagram,
                    'maxTotalConnections': self.max_total_connections,
                    'cursorThrottleMs': int(self.cursor_interval * 1000),
                    'eventRateLimit': self.event_rate_limit,
                },
            }
