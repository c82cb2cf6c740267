"""Open alignment tools, one per project, and what each has drawn so far."""

import logging
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeout
from typing import Dict, List, Optional

from plotmap.services.alignment import OverlayAlignmentController
from plotmap.services.image_resolver import LatestImageResolution
from plotmap.utils.render_state import (
    RenderState,
    desired_render_state,
    plan_render_ops,
)


LOGGER = logging.getLogger(__name__)


class AlignmentSession:
    """
    Couples a controller with its image resolution and render bookkeeping.

    Request handlers take ``lock`` around every controller call, so the
    controller stays the only writer of the alignment state.
    """

    def __init__(
        self,
        project_id: str,
        controller: OverlayAlignmentController,
        images: LatestImageResolution,
        markers_enabled: bool = True,
    ):
        self.project_id = project_id
        self.controller = controller
        self.images = images
        self.markers_enabled = markers_enabled
        self.lock = threading.RLock()
        self._applied: Optional[RenderState] = None
        self._pending: Optional[Future] = None
        self._requested_image: Optional[str] = None

    def sync_image(self) -> None:
        """Resolve the controller's image reference if it changed."""
        ref = self.controller.state.image_url
        if ref != self._requested_image:
            self._requested_image = ref
            self._pending = self.images.request(ref)

    def settle(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for the newest image resolution."""
        pending = self._pending
        if pending is None or timeout <= 0:
            return pending is None or pending.done()
        try:
            pending.result(timeout=timeout)
        except FutureTimeout:
            return False
        return True

    def render_ops(self) -> List[dict]:
        """Operations the map surface needs since the last call."""
        image_url = None if self.images.is_loading else self.images.current_url
        state = self.controller.state
        desired = desired_render_state(
            self.controller.final, image_url, state.opacity, self.markers_enabled
        )
        ops = plan_render_ops(self._applied, desired)
        self._applied = desired
        return [op.to_dict() for op in ops]

    def to_dict(self) -> dict:
        data = self.controller.snapshot()
        data.update({
            "projectId": self.project_id,
            "resolvedImageUrl": self.images.current_url,
            "imageLoading": self.images.is_loading,
            "renderOps": self.render_ops(),
        })
        return data

    def close(self) -> None:
        self.images.close()


class SessionRegistry:
    def __init__(self):
        self._sessions: Dict[str, AlignmentSession] = {}
        self._lock = threading.Lock()

    def open(self, session: AlignmentSession) -> AlignmentSession:
        with self._lock:
            previous = self._sessions.get(session.project_id)
            self._sessions[session.project_id] = session
        if previous is not None:
            LOGGER.info("Replacing open alignment session for %s", session.project_id)
            previous.close()
        return session

    def get(self, project_id: str) -> Optional[AlignmentSession]:
        with self._lock:
            return self._sessions.get(project_id)

    def discard(self, project_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(project_id, None)
        if session is None:
            return False
        session.close()
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
