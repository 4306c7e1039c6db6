"""tmrecords の CLI エントリーポイント"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List

from pydantic import ValidationError

from tmrecords import __version__
from tmrecords.auth.base import Provider
from tmrecords.config.settings import TmSettings
from tmrecords.errors import TmException
from tmrecords.runtime import Runtime
from tmrecords.services.leaderboards import PERIOD_SECONDS, filter_records_by_period
from tmrecords.services.formatting import format_time

logger = logging.getLogger("tmrecords")


def build_parser() -> argparse.ArgumentParser:
    """コマンドライン引数のパーサーを生成"""
    parser = argparse.ArgumentParser(
        prog="tmrecords",
        description="Trackmania のマップ記録を取得・通知する",
    )
    parser.add_argument("-v", "--version", action="version", version=f"tmrecords {__version__}")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="ログレベル",
    )
    parser.add_argument(
        "--config-check",
        action="store_true",
        help="設定内容を検証して表示（機微情報はマスク）",
    )

    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="API サーバーとスケジューラを起動する")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.add_argument("--no-scheduler", action="store_true", help="通知スケジューラを起動しない")

    subparsers.add_parser("check", help="新記録のチェックと通知を 1 回実行する")
    subparsers.add_parser("login", help="ログインのみを行いトークン取得を確認する")

    records = subparsers.add_parser("records", help="マップの最近の記録を表示する")
    records.add_argument("map_uid")
    records.add_argument("--period", default="1d", choices=sorted(PERIOD_SECONDS))

    return parser


def main(args: List[str] | None = None) -> int:
    """
    tmrecords のメインエントリーポイント

    Args:
        args: コマンドライン引数（Noneの場合はsys.argvを使用）

    Returns:
        終了コード（0: 成功、非0: エラー）
    """
    parser = build_parser()
    parsed = parser.parse_args(sys.argv[1:] if args is None else args)

    logging.basicConfig(
        level=getattr(logging, parsed.log_level),
        format="%(asctime)s %(levelname)s | %(name)s | %(message)s",
    )

    try:
        settings = TmSettings()
    except ValidationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    if parsed.config_check:
        print(json.dumps(settings.dump_masked(), ensure_ascii=False, indent=2))
        return 0

    if not parsed.command:
        parser.print_help()
        return 0

    try:
        if parsed.command == "serve":
            return _serve(settings, parsed)
        if parsed.command == "check":
            return asyncio.run(_check(settings))
        if parsed.command == "login":
            return asyncio.run(_login(settings))
        if parsed.command == "records":
            return asyncio.run(_records(settings, parsed.map_uid, parsed.period))
    except TmException as exc:
        print(f"Error: {exc.error.message}", file=sys.stderr)
        return 1

    parser.print_help()
    return 1


def _serve(settings: TmSettings, parsed: argparse.Namespace) -> int:
    import uvicorn

    from tmrecords.webapp.app import create_app

    if parsed.no_scheduler:
        settings = settings.model_copy(update={"scheduler_enabled": False})

    app = create_app(Runtime.from_settings(settings))
    uvicorn.run(
        app,
        host=parsed.host or settings.host,
        port=parsed.port or settings.port,
        log_level=parsed.log_level.lower(),
    )
    return 0


async def _check(settings: TmSettings) -> int:
    runtime = Runtime.from_settings(settings)
    try:
        await runtime.initial_login()
        records, drivers = await runtime.scheduler.run_scheduled_checks()
    finally:
        await runtime.aclose()

    for label, summary in (("maps", records), ("drivers", drivers)):
        print(
            f"{label}: checked={summary.checked} notified={len(summary.notified)} failed={len(summary.failed)}"
        )
    return 1 if records.failed or drivers.failed else 0


async def _login(settings: TmSettings) -> int:
    runtime = Runtime.from_settings(settings)
    try:
        await runtime.initial_login()
        for provider in Provider:
            acquired = runtime.token_store.get_access_token(provider) is not None
            print(f"{provider.value}: {'ok' if acquired else 'not acquired'}")
    finally:
        await runtime.aclose()
    return 0


async def _records(settings: TmSettings, map_uid: str, period: str) -> int:
    runtime = Runtime.from_settings(settings)
    try:
        await runtime.initial_login()
        data = await runtime.leaderboards.get_records(map_uid)
    finally:
        await runtime.aclose()

    records = filter_records_by_period(data, period)
    if not records:
        print(f"No records in the last {period}")
        return 0
    for record in records:
        print(f"#{record.position}\t{format_time(record.score)}\t{record.zone_name}\t{record.account_id}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
