from typing import Any

from fastapi import Request, Response

from cost_profiler.config.settings import Settings
from cost_profiler.core.broadcast import BroadcastManager


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_event_repository(request: Request) -> Any:
    return request.app.state.event_repository


def get_counter_store(request: Request) -> Any:
    return request.app.state.counter_store


def get_channel(request: Request) -> Any:
    return request.app.state.channel


def get_broadcast_manager(request: Request) -> BroadcastManager:
    return request.app.state.broadcast_manager


async def limit_events(request: Request, response: Response) -> None:
    await request.app.state.rate_limiters["events"](request, response)


async def limit_analytics(request: Request, response: Response) -> None:
    await request.app.state.rate_limiters["analytics"](request, response)
