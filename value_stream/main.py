import logging
import threading
import time
from typing import Any, Dict, Optional, Union

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import SimulationSettings, load_config
from .errors import ConfigurationError
from .simulation import ValueStreamEngine, build_value_stream
from .simulation.engine import stage_to_dict, item_to_dict
from .simulation.flow import Constraint
from .snapshot import SnapshotStore

logger = logging.getLogger("ValueStreamAPI")


# ========== Request models ==========

class RangeUpdate(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None


class StageUpdate(BaseModel):
    label: Optional[str] = None
    step_type: Optional[str] = None
    role: Optional[str] = None
    process_time: Optional[RangeUpdate] = None
    wait_time: Optional[RangeUpdate] = None
    actor_capacity: Optional[Union[int, str]] = None  # null / "unbounded" = no limit
    percent_complete_accurate: Optional[float] = None
    cadence_hours: Optional[float] = None


class ConstraintToggle(BaseModel):
    enabled: bool


class SpeedRequest(BaseModel):
    value: float


class BatchSizeRequest(BaseModel):
    value: int


class DefectRateRequest(BaseModel):
    value: float


class ScheduleRequest(BaseModel):
    hours: float = Field(gt=0)


class RunningRequest(BaseModel):
    running: bool


class InjectRequest(BaseModel):
    count: int = Field(default=1, ge=1, le=100)
    is_defect: bool = False


# ========== Simulation loop ==========

class SimulationRunner:
    """
    Drives engine.advance() from a background thread.

    Every engine call (loop, commands, queries) goes through `lock`, so
    readers never see a partially applied tick.
    """

    def __init__(self, engine: ValueStreamEngine):
        self.engine = engine
        self.lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def publish(self) -> None:
        SnapshotStore.update(self.engine.get_snapshot().to_dict())

    def loop(self) -> None:
        logger.info(">>> Simulation Started")
        while not self._stop.is_set():
            with self.lock:
                now = time.monotonic()
                if self.engine.advance(now):
                    self.publish()
                wait = self.engine.clock.seconds_until_next_tick(time.monotonic())
            self._stop.wait(min(max(wait, 0.005), 0.5))
        logger.info(">>> Simulation Stopped")

    def start(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(target=self.loop, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=2.0)


def create_app(engine: Optional[ValueStreamEngine] = None, start_loop: bool = True) -> FastAPI:
    """
    Build the API around an engine.

    Args:
        engine: Engine to serve (built from settings.json if None)
        start_loop: Run the tick loop on startup; tests step the engine themselves
    """
    if engine is None:
        engine = build_value_stream(SimulationSettings.from_config(load_config()))
    runner = SimulationRunner(engine)

    app = FastAPI(title="Value Stream Simulator API")
    app.state.runner = runner

    # Allow CORS for browser front ends
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        logger.warning(f"Rejected {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.on_event("startup")
    def startup_event():
        runner.publish()
        if start_loop:
            runner.start()

    @app.on_event("shutdown")
    def shutdown_event():
        runner.stop()

    def command(fn, *args) -> Dict[str, Any]:
        with runner.lock:
            result = fn(*args)
            runner.publish()
        return {"status": "ok", "result": result}

    # ---------- Queries ----------

    @app.get("/")
    def read_root():
        return {"status": "ok", "service": "Value Stream Simulator"}

    @app.get("/api/state")
    def get_state():
        """Returns the full snapshot of the last published tick."""
        state = SnapshotStore.get_all()
        if not state:
            with runner.lock:
                runner.publish()
            state = SnapshotStore.get_all()
        return state

    @app.get("/api/stages")
    def get_stages():
        with runner.lock:
            return [stage_to_dict(s) for s in engine.get_stages()]

    @app.get("/api/items")
    def get_items():
        with runner.lock:
            return [item_to_dict(i) for i in engine.get_items()]

    @app.get("/api/stats")
    def get_per_stage_stats():
        with runner.lock:
            return engine.get_per_stage_stats()

    @app.get("/api/metrics")
    def get_metrics():
        with runner.lock:
            return engine.get_metrics().to_dict()

    @app.get("/api/batch-countdowns")
    def get_batch_countdowns():
        with runner.lock:
            return engine.get_batch_countdowns()

    @app.get("/api/constraints")
    def get_constraints():
        with runner.lock:
            return engine.constraints.as_dict()

    # ---------- Commands ----------

    @app.post("/api/stages/{stage_id}")
    def set_stage_config(stage_id: str, update: StageUpdate):
        with runner.lock:
            known = {s.id for s in engine.registry}
        if stage_id not in known:
            raise HTTPException(status_code=404, detail=f"Unknown stage: {stage_id}")
        partial = update.model_dump(exclude_unset=True)
        for key in ("process_time", "wait_time"):
            if partial.get(key) is not None:
                partial[key] = {k: v for k, v in partial[key].items() if v is not None}
        return command(lambda: stage_to_dict(engine.set_stage_config(stage_id, partial)))

    @app.post("/api/constraints/{name}")
    def set_constraint(name: str, toggle: ConstraintToggle):
        if name not in {c.value for c in Constraint}:
            raise HTTPException(status_code=404, detail=f"Unknown constraint: {name}")
        return command(engine.set_constraint, name, toggle.enabled)

    @app.post("/api/speed")
    def set_speed(req: SpeedRequest):
        return command(engine.set_speed_multiplier, req.value)

    @app.post("/api/batch-size")
    def set_batch_size(req: BatchSizeRequest):
        return command(engine.set_batch_size, req.value)

    @app.post("/api/production-defect-rate")
    def set_production_defect_rate(req: DefectRateRequest):
        return command(engine.set_production_defect_rate, req.value)

    @app.post("/api/deployment-schedule")
    def set_deployment_schedule(req: ScheduleRequest):
        return command(engine.set_deployment_schedule, req.hours)

    @app.post("/api/running")
    def set_running(req: RunningRequest):
        return command(engine.set_running, req.running)

    @app.post("/api/items")
    def inject_items(req: InjectRequest):
        return command(engine.inject_items, req.count, req.is_defect)

    @app.post("/api/reset")
    def reset():
        return command(engine.reset)

    return app


app = create_app()


if __name__ == "__main__":
    config = load_config()
    logging.basicConfig(
        level=config.get("log_level", "INFO"),
        format="[VSM] %(asctime)s | %(levelname)s | %(message)s",
    )
    uvicorn.run("value_stream.main:app", host=config["host"], port=int(config["port"]))
