import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))


def _parse_now(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Mark lapsed pending billing estimates as expired."
    )
    parser.add_argument(
        "--now",
        type=_parse_now,
        default=None,
        help="UTC ISO8601 instant to sweep against. Defaults to the current time.",
    )
    args = parser.parse_args(argv)

    from src.api.routers import service_requests_config
    from src.core.service_requests import ServiceRequestWorkflowService

    service = ServiceRequestWorkflowService(
        repository=service_requests_config.build_repository(),
        notification_publisher=service_requests_config.build_notification_publisher(),
        transition_max_attempts=service_requests_config.transition_max_attempts(),
    )
    result = service.expire_lapsed_estimates(now=args.now)
    print(json.dumps(result.model_dump(), indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
