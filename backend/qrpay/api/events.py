"""Events API router for SSE payment status updates."""

import json

from fastapi import APIRouter, Request
from sse_starlette.sse import EventSourceResponse

from qrpay.core.events import event_bus

router = APIRouter()


@router.get("/events")
async def event_stream(request: Request):
    """
    Server-Sent Events (SSE) stream of payment events.

    Event types: payment_created, payment_qr_regenerated, payment_expired,
    payment_paid, settlement_recorded.

    Usage:
        const eventSource = new EventSource('/api/events');
        eventSource.addEventListener('payment_paid', (e) => {
            console.log(JSON.parse(e.data));
        });
    """
    async def generate():
        async for event in event_bus.subscribe():
            # Check if client disconnected
            if await request.is_disconnected():
                break

            yield {
                "event": event["type"],
                "data": json.dumps(event["data"], default=str)
            }

    return EventSourceResponse(generate())
