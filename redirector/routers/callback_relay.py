from fastapi import APIRouter, Depends, Request, status  # type: ignore[import-not-found]
from fastapi.responses import HTMLResponse  # type: ignore[import-not-found]

from ..config import config
from ..rendering import render_page
from ..runtime.defaults import default_relay
from ..transports.broadcast import CallbackRelay


router = APIRouter(tags=["redirect-callback"])

_AUTO_CLOSE_DELAY_MS = 300


def get_callback_relay() -> CallbackRelay:
    return default_relay()


def _render(title: str, message: str, *, http_status: int, auto_close: bool = False) -> HTMLResponse:
    body = render_page(
        config.REDIRECT.BROADCAST.RELAY_TEMPLATE,
        title=title,
        message=message,
        auto_close=auto_close,
        close_delay_ms=_AUTO_CLOSE_DELAY_MS,
    )
    return HTMLResponse(content=body, status_code=http_status)


def _relay(relay: CallbackRelay, uri: str, channel_name: str | None) -> HTMLResponse:
    try:
        reached = relay.handle_callback(uri, channel_name=channel_name)
    except ValueError as exc:
        return _render("Redirect Failed", str(exc), http_status=status.HTTP_400_BAD_REQUEST)
    if reached:
        return _render(
            "Redirect Complete",
            "You can close this window and return to the application.",
            http_status=status.HTTP_200_OK,
            auto_close=True,
        )
    if relay.resume_pending():
        return _render(
            "Redirect Complete",
            "Returning to the application.",
            http_status=status.HTTP_200_OK,
        )
    return _render(
        "Redirect Expired",
        "No pending redirect is waiting for this callback.",
        http_status=status.HTTP_404_NOT_FOUND,
    )


@router.get("/redirect/callback", response_class=HTMLResponse)
async def handle_redirect_callback(request: Request, relay: CallbackRelay = Depends(get_callback_relay)):
    return _relay(relay, str(request.url), None)


@router.get("/redirect/callback/{channel_name}", response_class=HTMLResponse)
async def handle_redirect_callback_for_channel(
    channel_name: str,
    request: Request,
    relay: CallbackRelay = Depends(get_callback_relay),
):
    return _relay(relay, str(request.url), channel_name)
