"""FastAPI web server for the lucky draw backend."""

from __future__ import annotations

import asyncio
from collections import deque
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Set, Tuple

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from luckydraw.draw.cycle import (
    ENDING_SOON_WINDOW,
    classify_order,
    countdown,
    is_ending_soon,
    is_virtual_end_date,
    resolve_effective_end_date,
)
from luckydraw.draw.models import LiveFeedItem, Milestone, Order, PaymentStatus, Plan
from luckydraw.draw.operator import DrawOperator
from luckydraw.draw.picker import eligible_orders
from luckydraw.draw.progress import milestone_percent, plan_image, plan_milestones, progress_percent
from luckydraw.errors import LuckyDrawError, ValidationError
from luckydraw.utils.common import format_pkr, format_timestamp, shorten_name, utcnow
from luckydraw.utils.logger import get_logger

logger = get_logger(__name__)


class OrderCreateRequest(BaseModel):
    name: Optional[str] = None
    payment_account: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("payment_account", "easypaisa_account")
    )
    plan_id: Optional[int] = None
    amount: Optional[int] = None


class CheckoutRequest(BaseModel):
    name: Optional[str] = None
    payment_account: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("payment_account", "easypaisa_account")
    )
    plan_id: Optional[int] = None
    amount: Optional[int] = None


class LuckyDrawWebServer:
    """HTTP and WebSocket gateway for the lucky draw backend."""

    def __init__(self, config: Dict[str, Any], operator: DrawOperator) -> None:
        self.config = config
        self.operator = operator
        self._store = operator.store

        server_cfg = config.get("server", {})
        self.countdown_interval = float(server_cfg.get("countdown_interval", 1.0))
        ending_soon_hours = config.get("draw", {}).get("ending_soon_hours")
        self.ending_soon_window = (
            timedelta(hours=float(ending_soon_hours)) if ending_soon_hours else ENDING_SOON_WINDOW
        )

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._broadcast_queue: Optional[asyncio.Queue[Tuple[str, Dict[str, Any] | None]]] = None
        self._broadcast_task: Optional[asyncio.Task[None]] = None
        self._ws_lock: Optional[asyncio.Lock] = None
        self._unsubscribers: List[Callable[[], None]] = []
        self._websockets: Set[WebSocket] = set()
        self._live_feed: Deque[LiveFeedItem] = deque(maxlen=int(server_cfg.get("live_feed_max_entries", 100)))

        self.app = FastAPI(
            title="Lucky Draw API",
            description="Plans, orders, cycle resets and winner draws",
            version="1.0.0",
            lifespan=self._lifespan,
        )

        self._setup_middleware()
        self._setup_exception_handlers()
        self._setup_routes()

    # ------------------------------------------------------------------
    # FastAPI scaffolding
    # ------------------------------------------------------------------
    def _setup_middleware(self) -> None:
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _setup_exception_handlers(self) -> None:
        @self.app.exception_handler(LuckyDrawError)
        async def handle_draw_error(request: Request, exc: LuckyDrawError) -> JSONResponse:
            if exc.status_code >= 500:
                logger.error("%s %s failed: %s", request.method, request.url.path, exc)
            else:
                logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
            return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

        @self.app.exception_handler(RequestValidationError)
        async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
            fields = [".".join(str(part) for part in err.get("loc", ())[1:]) for err in exc.errors()]
            message = f"Invalid request: {', '.join(f for f in fields if f) or 'body'}"
            return JSONResponse({"error": message}, status_code=400)

        @self.app.exception_handler(StarletteHTTPException)
        async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
            return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)

    def _setup_routes(self) -> None:  # noqa: C901
        # ------------------------------------------------------------------
        # Health & status
        # ------------------------------------------------------------------
        @self.app.get("/api/health")
        def health_check() -> Dict[str, Any]:
            return {
                "status": "ok",
                "timestamp": utcnow().isoformat(),
                "components": {
                    "web": True,
                    "operator": self.operator.get_status().get("status", "unknown"),
                    "store": self._store.health_check(),
                },
            }

        @self.app.get("/api/status")
        def system_status() -> Dict[str, Any]:
            return {
                "timestamp": utcnow().isoformat(),
                "operator": self.operator.get_status(),
                "websocket_connections": len(self._websockets),
                "live_feed": len(self._live_feed),
            }

        # ------------------------------------------------------------------
        # Reset trigger
        # ------------------------------------------------------------------
        @self.app.api_route("/api/reset-plans", methods=["GET", "POST"])
        def reset_plans() -> Dict[str, Any]:
            reset_ids = self.operator.reset_expired_plans()
            return {
                "success": True,
                "message": "Plans checked and reset successfully",
                "resetPlans": reset_ids,
            }

        # ------------------------------------------------------------------
        # Plans
        # ------------------------------------------------------------------
        @self.app.get("/api/plans")
        def list_plans() -> Dict[str, Any]:
            self._reset_quietly()
            now = utcnow()
            plans = self._store.list_plans()
            milestones = self._store.list_milestones()
            completed = self._store.list_orders(status=PaymentStatus.COMPLETED)
            return {
                "plans": [
                    self._serialize_plan_view(plan, now, milestones, self._plan_pool(plan, completed, now))
                    for plan in plans
                ],
                "timestamp": now.isoformat(),
            }

        @self.app.get("/api/plans/{plan_id}")
        def get_plan(plan_id: int) -> Dict[str, Any]:
            now = utcnow()
            plan = self.operator.get_plan(plan_id)
            return self._serialize_plan_view(
                plan,
                now,
                self._store.list_milestones(plan_id=plan.id),
                self.operator.participants(plan, now),
            )

        @self.app.get("/api/plans/{plan_id}/participants")
        def get_plan_participants(plan_id: int, limit: int = 200) -> Dict[str, Any]:
            plan = self.operator.get_plan(plan_id)
            participants = self.operator.participants(plan)
            total = len(participants)
            if limit > 0:
                participants = participants[:limit]
            return {
                "plan_id": plan.id,
                "participants": [self._serialize_participant(order) for order in participants],
                "total_participants": total,
                "total_amount": sum(order.amount for order in participants),
                "timestamp": utcnow().isoformat(),
            }

        @self.app.get("/api/results")
        def get_results() -> Dict[str, Any]:
            now = utcnow()
            ending = [plan for plan in self._store.list_plans() if is_ending_soon(plan, now, self.ending_soon_window)]
            return {
                "plans": [
                    {
                        "id": plan.id,
                        "offer": f"{plan.reward_title} (Offer {index})",
                        "reward_title": plan.reward_title,
                        "end_date": format_timestamp(plan.end_date),
                        "countdown": countdown(plan, now).to_dict(),
                    }
                    for index, plan in enumerate(ending, start=1)
                ],
                "message": None if ending else "No plans ending soon",
                "timestamp": now.isoformat(),
            }

        # ------------------------------------------------------------------
        # Winners
        # ------------------------------------------------------------------
        @self.app.get("/api/plans/{plan_id}/winner")
        def get_winner(plan_id: int) -> Dict[str, Any]:
            return self.operator.current_winner(plan_id).to_dict()

        @self.app.post("/api/plans/{plan_id}/winner")
        def draw_winner(plan_id: int, force: bool = False) -> Dict[str, Any]:
            result = self.operator.draw_winner(plan_id, force=force)
            if result.order is not None and not result.already_drawn:
                self._push_feed(
                    "winner_drawn",
                    result.announcement or "",
                    {"plan_id": plan_id, "order_code": result.order.order_code},
                )
            return result.to_dict()

        # ------------------------------------------------------------------
        # Orders
        # ------------------------------------------------------------------
        @self.app.get("/api/orders")
        def list_orders(plan_id: Optional[int] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
            status_filter = self._parse_status(status)
            now = utcnow()
            plans = {plan.id: plan for plan in self._store.list_plans()}
            orders = self._store.list_orders(plan_id=plan_id, status=status_filter)
            return [self._serialize_order(order, plans.get(order.plan_id), now) for order in orders]

        @self.app.post("/api/orders")
        def create_order(request: OrderCreateRequest) -> Dict[str, Any]:
            order = self.operator.create_order(
                name=request.name,
                payment_account=request.payment_account,
                plan_id=request.plan_id,
                amount=request.amount,
            )
            return order.to_dict()

        @self.app.get("/api/orders/{order_code}")
        def get_order(order_code: str) -> Dict[str, Any]:
            order = self.operator.get_order(order_code)
            plan = self._store.get_plan(order.plan_id)
            return self._serialize_order(order, plan, utcnow())

        @self.app.post("/api/checkout")
        async def checkout(request: CheckoutRequest) -> Dict[str, Any]:
            order = await self.operator.checkout(
                name=request.name,
                payment_account=request.payment_account,
                plan_id=request.plan_id,
                amount=request.amount,
            )
            return order.to_dict()

        @self.app.get("/api/activities")
        def get_live_feed(limit: int = 50) -> Dict[str, Any]:
            limit = max(1, min(limit, 200))
            feed = list(self._live_feed)[-limit:]
            return {"activities": [self._serialize_feed_item(item) for item in reversed(feed)]}

        # ------------------------------------------------------------------
        # WebSocket endpoint
        # ------------------------------------------------------------------
        @self.app.websocket("/ws/lottery")
        async def websocket_endpoint(websocket: WebSocket) -> None:
            await websocket.accept()
            if self._ws_lock is None:
                self._ws_lock = asyncio.Lock()
            async with self._ws_lock:
                self._websockets.add(websocket)
            logger.info("WebSocket client connected (%s total)", len(self._websockets))

            ticker: Optional[asyncio.Task[None]] = None
            try:
                snapshot = await asyncio.to_thread(self._build_initial_snapshot)
                await websocket.send_json({"type": "snapshot", "payload": snapshot})
                ticker = asyncio.create_task(self._countdown_ticker(websocket), name="lucky-draw-countdown")
                while True:
                    try:
                        await websocket.receive_text()
                    except WebSocketDisconnect:
                        break
            finally:
                if ticker is not None:
                    ticker.cancel()
                    try:
                        await ticker
                    except asyncio.CancelledError:
                        pass
                async with self._ws_lock:
                    self._websockets.discard(websocket)
                logger.info("WebSocket client disconnected (%s remaining)", len(self._websockets))

    # ------------------------------------------------------------------
    # Lifecycle management
    # ------------------------------------------------------------------
    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        self._loop = asyncio.get_running_loop()
        self._broadcast_queue = asyncio.Queue()
        self._ws_lock = asyncio.Lock()
        self._register_store_listeners()
        self._broadcast_task = asyncio.create_task(self._broadcast_loop(), name="lucky-draw-broadcast")
        try:
            yield
        finally:
            await self.stop()

    async def start(self, host: str = "0.0.0.0", port: int = 6080) -> None:
        import uvicorn

        logger.info("Starting lucky draw web server on %s:%s", host, port)
        config = uvicorn.Config(self.app, host=host, port=port, log_level="info", access_log=True)
        server = uvicorn.Server(config)
        try:
            await server.serve()
        finally:
            logger.info("Lucky draw web server stopped")

    async def stop(self) -> None:
        logger.info("Stopping lucky draw web server")
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        if self._broadcast_task:
            self._broadcast_task.cancel()
            try:
                await self._broadcast_task
            except asyncio.CancelledError:
                pass
            self._broadcast_task = None
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        async with self._ws_lock:
            for websocket in list(self._websockets):
                try:
                    await websocket.close(code=1001, reason="Server shutdown")
                except RuntimeError as exc:
                    logger.debug("Error closing websocket: %s", exc)
            self._websockets.clear()

    # ------------------------------------------------------------------
    # Store listeners & broadcasting
    # ------------------------------------------------------------------
    def _register_store_listeners(self) -> None:
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self._store.subscribe_to_new_completed_orders(self._on_order_completed),
            self._store.add_listener("plans_reset", lambda payload: self._enqueue_broadcast("plans_reset", payload)),
        ]

    def _on_order_completed(self, order: Order) -> None:
        self._push_feed(
            "order_completed",
            f"{shorten_name(order.name)} just entered this plan!",
            {"plan_id": order.plan_id, "order_code": order.order_code},
        )
        self._enqueue_broadcast("order_completed", self._serialize_participant(order) | {"plan_id": order.plan_id})

    def _push_feed(self, event_type: str, message: str, details: Dict[str, Any]) -> None:
        item = LiveFeedItem(event_type=event_type, message=message, details=details)
        self._live_feed.append(item)
        self._enqueue_broadcast("live_feed", self._serialize_feed_item(item))

    def _enqueue_broadcast(self, event_type: str, payload: Dict[str, Any] | None) -> None:
        if not self._broadcast_queue or not self._loop:
            return
        try:
            self._loop.call_soon_threadsafe(self._broadcast_queue.put_nowait, (event_type, payload))
            logger.debug("Enqueued broadcast for %s", event_type)
        except RuntimeError:  # pragma: no cover - loop already closing
            logger.debug("Failed to enqueue broadcast for %s", event_type)

    async def _broadcast_loop(self) -> None:
        assert self._broadcast_queue is not None
        while True:
            try:
                event_type, payload = await self._broadcast_queue.get()
                await self._broadcast_to_clients(event_type, payload)
            except asyncio.CancelledError:
                break
            except Exception as exc:  # pragma: no cover
                logger.exception("Broadcast loop error: %s", exc)

    async def _broadcast_to_clients(self, event_type: str, payload: Dict[str, Any] | None) -> None:
        if self._ws_lock is None:
            self._ws_lock = asyncio.Lock()
        message = {"type": event_type, "payload": payload, "timestamp": utcnow().isoformat()}
        async with self._ws_lock:
            if not self._websockets:
                return
            to_remove: List[WebSocket] = []
            for websocket in self._websockets:
                try:
                    await websocket.send_json(message)
                except Exception as exc:  # pragma: no cover
                    logger.debug("WebSocket send failed: %s", exc)
                    to_remove.append(websocket)
            for websocket in to_remove:
                self._websockets.discard(websocket)

    async def _countdown_ticker(self, websocket: WebSocket) -> None:
        """Push every plan's countdown once per interval until cancelled."""
        while True:
            await asyncio.sleep(self.countdown_interval)
            try:
                plans = await asyncio.to_thread(self._store.list_plans)
            except LuckyDrawError as exc:
                logger.warning("Countdown refresh failed: %s", exc)
                continue
            now = utcnow()
            payload = {str(plan.id): countdown(plan, now).to_dict() for plan in plans}
            try:
                await websocket.send_json({"type": "countdown", "payload": payload, "timestamp": now.isoformat()})
            except (WebSocketDisconnect, RuntimeError):
                return

    def _build_initial_snapshot(self) -> Dict[str, Any]:
        now = utcnow()
        plans = self._store.list_plans()
        milestones = self._store.list_milestones()
        completed = self._store.list_orders(status=PaymentStatus.COMPLETED)
        return {
            "plans": [
                self._serialize_plan_view(plan, now, milestones, self._plan_pool(plan, completed, now))
                for plan in plans
            ],
            "live_feed": [self._serialize_feed_item(item) for item in reversed(self._live_feed)],
            "operator": self.operator.get_status(),
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _reset_quietly(self) -> None:
        # A failed reset must not block the plan listing.
        try:
            self.operator.reset_expired_plans()
        except LuckyDrawError as exc:
            logger.error("Error checking/resetting plans: %s", exc)

    def _plan_pool(self, plan: Plan, completed: Iterable[Order], now: datetime) -> List[Order]:
        return eligible_orders(
            completed,
            plan,
            legacy_fallback=self.operator.legacy_fallback,
            now=now,
            cycle_length=self.operator.cycle_length,
        )

    @staticmethod
    def _parse_status(status: Optional[str]) -> Optional[PaymentStatus]:
        if status is None:
            return None
        try:
            return PaymentStatus(status)
        except ValueError:
            raise ValidationError("Invalid payment status", ["status"])

    # ------------------------------------------------------------------
    # Serialization helpers
    # ------------------------------------------------------------------
    def _serialize_plan_view(
        self,
        plan: Plan,
        now: datetime,
        milestones: Iterable[Milestone],
        participants: List[Order],
    ) -> Dict[str, Any]:
        effective_end = resolve_effective_end_date(plan, now, self.operator.cycle_length)
        tiers = plan_milestones(plan, milestones)
        data = plan.to_dict()
        data.update(
            {
                "image": plan.image_url or plan_image(plan.reward_title),
                "effective_end_date": format_timestamp(effective_end),
                "virtual_end_date": is_virtual_end_date(plan, now),
                "countdown": countdown(plan, now).to_dict(),
                "progress_percent": round(progress_percent(plan.current_amount, plan.goal_amount), 2),
                "goal_label": format_pkr(plan.goal_amount),
                "current_label": format_pkr(plan.current_amount),
                "milestones": [
                    {
                        "reward_name": tier.reward_name,
                        "amount": tier.amount,
                        "percent": round(milestone_percent(tier, plan.goal_amount), 2),
                        "image": tier.image_url or plan_image(tier.reward_name),
                    }
                    for tier in tiers
                ],
                "participants": [self._serialize_participant(order) for order in participants],
                "participant_count": len(participants),
                "latest_participant": participants[0].name if participants else None,
            }
        )
        return data

    @staticmethod
    def _serialize_participant(order: Order) -> Dict[str, Any]:
        return {
            "order_code": order.order_code,
            "name": order.name,
            "created_at": format_timestamp(order.created_at),
        }

    def _serialize_order(self, order: Order, plan: Optional[Plan], now: datetime) -> Dict[str, Any]:
        data = order.to_dict()
        data["plan"] = plan.to_dict() if plan else None
        data["cycle"] = (
            classify_order(order, plan, now, self.operator.cycle_length).to_dict() if plan else None
        )
        return data

    @staticmethod
    def _serialize_feed_item(item: LiveFeedItem) -> Dict[str, Any]:
        return {
            "type": item.event_type,
            "message": item.message,
            "details": item.details,
            "timestamp": item.created_at.isoformat(),
        }
