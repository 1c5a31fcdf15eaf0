"""Issue a bearer token for a staff member, for local testing of the API."""

import argparse
from datetime import timedelta

from admission.core.security import create_access_token


def main() -> None:
    """Print a token for the given staff ID."""
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("actor_id", help="Staff identifier stored in the token's sub claim")
    parser.add_argument(
        "--minutes",
        type=int,
        default=None,
        help="Token lifetime in minutes (defaults to ACCESS_TOKEN_EXPIRE_MINUTES)",
    )
    args = parser.parse_args()

    expires = timedelta(minutes=args.minutes) if args.minutes else None
    print(create_access_token(args.actor_id, expires_delta=expires))


if __name__ == "__main__":
    main()
