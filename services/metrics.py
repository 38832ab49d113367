from __future__ import annotations

from threading import Lock
from typing import Tuple


_lock = Lock()
_counters: dict[str, dict[Tuple[Tuple[str, str], ...], int]] = {}
# counters waiting on a transaction, keyed by id(conn)
_pending: dict[int, list[tuple[str, dict[str, str] | None, int]]] = {}


def _inc(name: str, labels: dict[str, str] | None = None, value: int = 1) -> None:
    key = tuple(sorted((labels or {}).items()))
    with _lock:
        series = _counters.setdefault(name, {})
        series[key] = int(series.get(key, 0)) + int(value)


def _on_commit(conn, name: str, labels: dict[str, str] | None = None, value: int = 1) -> None:
    with _lock:
        _pending.setdefault(id(conn), []).append((name, labels, value))


def commit_pending(conn) -> None:
    with _lock:
        queued = _pending.pop(id(conn), [])
    for name, labels, value in queued:
        _inc(name, labels, value)


def discard_pending(conn) -> None:
    with _lock:
        _pending.pop(id(conn), None)


def increment_http_requests(route: str, status: int) -> None:
    _inc("http_requests_total", {"route": route, "status": str(status)})


def increment_transition(conn, from_status: str, to_status: str) -> None:
    _on_commit(conn, "payout_transitions_total", {"from": from_status, "to": to_status})


def increment_transition_rejected(from_status: str, to_status: str) -> None:
    _inc("payout_transitions_rejected_total", {"from": from_status, "to": to_status})


def increment_claims(conn, count: int) -> None:
    if count:
        _on_commit(conn, "payout_claims_total", value=count)


def increment_lease_reclaimed(conn, outcome: str) -> None:
    _on_commit(conn, "payout_leases_reclaimed_total", {"outcome": outcome})


def increment_gateway_attempt(result: str) -> None:
    _inc("gateway_attempts_total", {"result": result})


def increment_webhook_delivery(outcome: str) -> None:
    _inc("webhook_deliveries_total", {"outcome": outcome})


def increment_idempotency_replay() -> None:
    _inc("idempotency_replays_total")


def increment_transfer_sync(outcome: str) -> None:
    _inc("transfer_status_syncs_total", {"outcome": outcome})


def counter_value(name: str, labels: dict[str, str] | None = None) -> int:
    key = tuple(sorted((labels or {}).items()))
    with _lock:
        return int(_counters.get(name, {}).get(key, 0))


def reset() -> None:
    with _lock:
        _counters.clear()
        _pending.clear()


def render_prometheus() -> str:
    lines: list[str] = []
    with _lock:
        for name, series in sorted(_counters.items()):
            lines.append(f"# TYPE {name} counter")
            for labels, value in sorted(series.items()):
                if labels:
                    label_str = ",".join(f'{k}="{v}"' for k, v in labels)
                    lines.append(f"{name}{{{label_str}}} {value}")
                else:
                    lines.append(f"{name} {value}")
    return "\n".join(lines) + ("\n" if lines else "")
