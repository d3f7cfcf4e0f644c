"""CLI tool for admin operations and one-off ticks.

Usage:
    python -m dca_service.cli <command> [args]
"""

import asyncio
import getpass
import json
import sys

from pydantic import ValidationError
from sqlmodel import Session

from dca_service.config import get_settings
from dca_service.database import create_db_and_tables, make_engine
from dca_service.errors import DcaServiceError
from dca_service.models import Credential
from dca_service.schemas.campaign import CampaignCreate, CampaignRead
from dca_service.schemas.credential import CredentialCreate
from dca_service.schemas.position import PositionCreate, PositionRead, TrailingStopUpdate
from dca_service.services.encryption import encrypt
from dca_service.utils.logging import setup_logging

USAGE = """Usage: python -m dca_service.cli <command> [args]
Commands:
  init-db
  add-credential
  add-campaign SYMBOL BASE_AMOUNT [MAX_ORDERS]
  campaign CAMPAIGN_ID start|stop|reset
  open-position SYMBOL LONG|SHORT ENTRY_PRICE QUANTITY
  trailing-stop POSITION_ID on|off [DISTANCE] [CURRENT_PRICE]
  close-position POSITION_ID EXIT_PRICE
  dca-tick
  trailing-stop-tick
  reconcile
  run"""


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def _service():
    from dca_service.engine.app import build_service
    return build_service(get_settings())


def init_db():
    settings = get_settings()
    create_db_and_tables(make_engine(settings.database_url))
    print(f"Database ready: {settings.database_url}")


def add_credential():
    """Store an encrypted Lighter credential."""
    settings = get_settings()
    engine = make_engine(settings.database_url)
    create_db_and_tables(engine)

    try:
        data = CredentialCreate(
            name=input("Name [default]: ").strip() or "default",
            api_key_index=int(input("API key index [3]: ").strip() or 3),
            account_index=int(input("Account index [0]: ").strip() or 0),
            private_key=getpass.getpass("Private key: "),
        )
    except (ValidationError, ValueError) as e:
        print(f"Invalid credential: {e}")
        sys.exit(1)

    cred = Credential(
        name=data.name,
        lighter_host=data.lighter_host,
        api_key_index=data.api_key_index,
        private_key_encrypted=encrypt(data.private_key, settings.encryption_key),
        account_index=data.account_index,
    )
    with Session(engine) as session:
        session.add(cred)
        session.commit()
        session.refresh(cred)
    print(f"Credential '{cred.name}' stored (id={cred.id}).")


def add_campaign(args: list[str]):
    if len(args) < 2:
        print(USAGE)
        sys.exit(1)
    payload = {"symbol": args[0], "base_amount": args[1]}
    if len(args) > 2:
        payload["max_orders"] = args[2]
    data = CampaignCreate.model_validate(payload)
    campaign = _service().dca.create_campaign(data)
    _print_json(CampaignRead.model_validate(campaign).model_dump(mode="json"))


def campaign_action(args: list[str]):
    if len(args) != 2 or args[1] not in ("start", "stop", "reset"):
        print(USAGE)
        sys.exit(1)
    dca = _service().dca
    campaign_id = int(args[0])
    if args[1] == "reset":
        campaign = dca.reset_campaign(campaign_id)
    else:
        campaign = dca.set_campaign_active(campaign_id, args[1] == "start")
    _print_json(CampaignRead.model_validate(campaign).model_dump(mode="json"))


def open_position(args: list[str]):
    if len(args) != 4:
        print(USAGE)
        sys.exit(1)
    data = PositionCreate.model_validate({
        "symbol": args[0].upper(),
        "position_type": args[1].upper(),
        "entry_price": args[2],
        "quantity": args[3],
    })
    position = _service().trailing.open_position(data)
    _print_json(PositionRead.model_validate(position).model_dump(mode="json"))


def trailing_stop(args: list[str]):
    if len(args) < 2 or args[1] not in ("on", "off"):
        print(USAGE)
        sys.exit(1)
    request = TrailingStopUpdate.model_validate({
        "enabled": args[1] == "on",
        "distance": args[2] if len(args) > 2 else None,
        "current_price": args[3] if len(args) > 3 else None,
    })
    position = _service().set_trailing_stop(
        int(args[0]), request.enabled, request.distance, request.current_price
    )
    _print_json(PositionRead.model_validate(position).model_dump(mode="json"))


def close_position(args: list[str]):
    if len(args) != 2:
        print(USAGE)
        sys.exit(1)
    position = _service().trailing.close_position(int(args[0]), args[1])
    _print_json(PositionRead.model_validate(position).model_dump(mode="json"))


async def _run_tick(kind: str):
    service = _service()
    try:
        if kind == "dca":
            report = await service.run_dca_tick()
        elif kind == "trailing":
            report = await service.run_trailing_stop_tick()
        else:
            report = await service.dca.reconcile_pending_orders()
    finally:
        await service.shutdown()
    _print_json(report.to_dict())


def main():
    if len(sys.argv) < 2:
        print(USAGE)
        sys.exit(1)

    setup_logging(get_settings().log_level)
    command, args = sys.argv[1], sys.argv[2:]
    try:
        if command == "init-db":
            init_db()
        elif command == "add-credential":
            add_credential()
        elif command == "add-campaign":
            add_campaign(args)
        elif command == "campaign":
            campaign_action(args)
        elif command == "open-position":
            open_position(args)
        elif command == "trailing-stop":
            trailing_stop(args)
        elif command == "close-position":
            close_position(args)
        elif command == "dca-tick":
            asyncio.run(_run_tick("dca"))
        elif command == "trailing-stop-tick":
            asyncio.run(_run_tick("trailing"))
        elif command == "reconcile":
            asyncio.run(_run_tick("reconcile"))
        elif command == "run":
            from dca_service.main import run
            run()
        else:
            print(f"Unknown command: {command}")
            sys.exit(1)
    except ValidationError as e:
        print(f"Invalid input: {e}")
        sys.exit(1)
    except DcaServiceError as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
