from __future__ import annotations

from dataclasses import dataclass, field
from threading import Event, Lock, Thread
from typing import Any, Dict, List, Optional
import argparse
import logging
import time

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from signalflow.errors import SimulationError, UnknownStrategyError
from signalflow.logging_setup import setup_logging
from signalflow.simulation.core import SimulationConfig, World, load_config

log = logging.getLogger(__name__)


@dataclass
class SimulationRuntime:
    """Owns a :class:`World` and ticks it from a background thread.

    Every access to the world goes through ``_lock`` so a tick never
    interleaves with an import, a strategy switch or a state read.
    """

    config: SimulationConfig = field(default_factory=SimulationConfig)
    world: World = field(init=False)
    _lock: Lock = field(default_factory=Lock, init=False)
    _stop_event: Event = field(default_factory=Event, init=False)
    _thread: Optional[Thread] = field(default=None, init=False)

    def __post_init__(self) -> None:
        self.world = World.from_config(self.config)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = Thread(target=self._run_loop, daemon=True)
        self._thread.start()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            start = time.perf_counter()
            try:
                with self._lock:
                    self.world.on_tick(self.config.tick_duration)
            except Exception:
                log.exception("Simulation tick failed at t=%.2f, stopping the ticker", self.world.time)
                self._stop_event.set()
                break
            elapsed = time.perf_counter() - start
            tick_seconds = max(self.config.tick_duration - elapsed, 0.0)
            time.sleep(max(tick_seconds, 0.001))

    def shutdown(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=1.0)

    def step(self, ticks: int = 1) -> float:
        with self._lock:
            self.world.run(ticks, self.config.tick_duration)
            return self.world.time

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            world = self.world
            return {
                "time": world.time,
                "strategy": world.manager.get_selected_strategy_type(),
                "cars_number": world.cars_number,
                "intersections": [
                    {
                        "id": intersection.id,
                        "x": intersection.x,
                        "y": intersection.y,
                        "strategy": intersection.control.strategy_type,
                        "phase": intersection.control.strategy.get_current_phase(),
                        "total_phases": intersection.control.strategy.get_total_phases(),
                        "signals": intersection.control.state,
                    }
                    for intersection in world.intersections
                    if intersection.control is not None
                ],
                "roads": [road.to_dict() for road in world.roads],
                "cars": [car.to_dict() for car in world.cars],
            }

    def metrics(self, count: int = 60) -> Dict[str, Any]:
        with self._lock:
            latest = self.world.metrics.latest()
            return {
                "latest": latest.to_dict() if latest else None,
                "history": [snapshot.to_dict() for snapshot in self.world.metrics.recent(count)],
            }

    def strategies(self) -> Dict[str, Any]:
        with self._lock:
            manager = self.world.manager
            return {
                "selected": manager.get_selected_strategy_type(),
                "strategies": manager.describe_strategies(),
            }

    def select_strategy(self, key: str) -> bool:
        with self._lock:
            return self.world.set_strategy(key)

    def strategy_settings(self, key: str) -> Dict[str, Any]:
        with self._lock:
            return self.world.manager.get_strategy_settings(key)

    def update_strategy_settings(self, key: str, options: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            return self.world.apply_strategy_settings(key, options)

    def set_cars_number(self, cars_number: int) -> Dict[str, int]:
        cars_number = max(0, cars_number)
        with self._lock:
            self.world.cars_number = cars_number
        return {"cars_number": cars_number}

    def export_world(self) -> Dict[str, Any]:
        with self._lock:
            return self.world.to_dict()

    def import_world(self, data: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            backup = self.world.to_dict()
            try:
                self.world.load(data)
            except (AttributeError, KeyError, TypeError, ValueError, SimulationError) as exc:
                log.warning("Rejected world import: %s", exc)
                self.world.load(backup)
                raise ValueError(f"Invalid world snapshot: {exc}") from exc
            return {
                "intersections": len(self.world.intersections),
                "roads": len(self.world.roads),
            }


class StrategySelection(BaseModel):
    key: str


class StrategySettingsUpdate(BaseModel):
    options: Dict[str, Any]


class CarsUpdate(BaseModel):
    cars_number: int


class WorldImport(BaseModel):
    world: Dict[str, Any]


def create_app(runtime: SimulationRuntime | None = None) -> FastAPI:
    runtime = runtime or SimulationRuntime()
    app = FastAPI(title="SignalFlow")
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def _startup() -> None:  # pragma: no cover - lifecycle hook
        runtime.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:  # pragma: no cover - lifecycle hook
        runtime.shutdown()

    @app.get("/api/state")
    async def get_state() -> Dict:
        return runtime.snapshot()

    @app.get("/api/metrics")
    async def get_metrics() -> Dict:
        return runtime.metrics()

    @app.get("/api/strategies")
    async def list_strategies() -> Dict:
        return runtime.strategies()

    @app.post("/api/strategies/select")
    async def select_strategy(selection: StrategySelection) -> Dict:
        if not runtime.select_strategy(selection.key):
            raise HTTPException(status_code=404, detail=f"Unknown strategy: {selection.key}")
        return {"selected": selection.key}

    @app.get("/api/strategies/{key}/settings")
    async def get_settings(key: str) -> Dict:
        try:
            return runtime.strategy_settings(key)
        except UnknownStrategyError as exc:
            raise HTTPException(status_code=404, detail=f"Unknown strategy: {key}") from exc

    @app.post("/api/strategies/{key}/settings")
    async def set_settings(key: str, update: StrategySettingsUpdate) -> Dict:
        try:
            return runtime.update_strategy_settings(key, update.options)
        except UnknownStrategyError as exc:
            raise HTTPException(status_code=404, detail=f"Unknown strategy: {key}") from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.post("/api/settings/cars")
    async def set_cars(update: CarsUpdate) -> Dict[str, int]:
        return runtime.set_cars_number(update.cars_number)

    @app.get("/api/world/export")
    async def export_world() -> Dict:
        return runtime.export_world()

    @app.post("/api/world/import")
    async def import_world(payload: WorldImport) -> Dict:
        try:
            return runtime.import_world(payload.world)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    return app


def main(argv: List[str] | None = None) -> None:  # pragma: no cover - manual entry point
    parser = argparse.ArgumentParser(description="Run the SignalFlow HTTP server")
    parser.add_argument("--config", help="JSON or YAML simulation configuration")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args(argv)

    setup_logging()
    config = load_config(args.config) if args.config else SimulationConfig()
    uvicorn.run(create_app(SimulationRuntime(config)), host=args.host, port=args.port)


app = create_app()


if __name__ == "__main__":  # pragma: no cover
    main()
