"""CLI 入口模块 - AI Futures Trader 命令行接口。"""

import importlib.util
import json
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click

from ai_futures import __version__
from ai_futures.config import Settings, get_settings
from ai_futures.errors import PositionNotFoundError
from ai_futures.performance.analyzer import PerformanceAnalyzer
from ai_futures.pipeline import TradingAgent, build_agent
from ai_futures.store.sqlite import SQLiteStore
from ai_futures.utils.logging import bind_trader_context, get_logger, setup_logging

_DEPENDENCIES = [
    ("pydantic", "配置与决策校验"),
    ("pydantic_settings", "环境变量加载"),
    ("httpx", "OpenRouter HTTP 客户端"),
    ("tenacity", "重试"),
    ("pandas", "K 线处理"),
    ("numpy", "数值计算"),
    ("structlog", "结构化日志"),
    ("click", "命令行"),
    ("binance", "Binance 合约 API"),
]


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="显示版本号")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """AI Futures Trader - 无人值守的 AI 合约交易代理。

    每个周期：对账持仓 → 风控检查 → 计算指标 → LLM 决策 → 先平后开执行 → 记录。
    """
    if version:
        click.echo(f"ai-futures version {__version__}")
        return
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def _load_settings(**overrides: object) -> Settings:
    """读取配置、初始化日志并绑定交易员上下文。"""
    settings = get_settings()
    if overrides:
        settings = settings.model_copy(update=overrides)
    setup_logging(settings)
    bind_trader_context(settings.trader_id, settings.mode.value)
    return settings


def _open_store(settings: Settings) -> SQLiteStore:
    settings.ensure_directories()
    return SQLiteStore(settings.db_path, settings.trader_id)


@contextmanager
def _agent_session(settings: Settings) -> Iterator[TradingAgent]:
    """实盘缺少密钥时直接退出；结束时关闭代理与数据库。"""
    missing = settings.validate_for_live() if settings.is_live_mode else []
    if missing:
        get_logger("ai_futures.main").error(
            "missing_required_config",
            missing_keys=missing,
            hint="请在 .env 文件中配置必要的 API 密钥",
        )
        sys.exit(1)

    store = _open_store(settings)
    agent = build_agent(settings, store)
    try:
        yield agent
    finally:
        agent.close()
        store.close()


@cli.command()
def once() -> None:
    """执行单次决策周期（暂停状态下直接跳过）。"""
    settings = _load_settings()
    logger = get_logger("ai_futures.main")
    logger.info("starting_single_run")

    with _agent_session(settings) as agent:
        try:
            record = agent.tick()
        except KeyboardInterrupt:
            logger.info("run_interrupted")
            sys.exit(130)
        if record is None:
            logger.info("run_skipped", reason="trader paused")
            return
        logger.info(
            "run_completed",
            cycle=record.cycle_number,
            success=record.success,
            actions=len(record.actions),
            skipped=record.skipped_reason or None,
            error=record.error_message or None,
        )


@cli.command()
@click.option(
    "--interval-min",
    "-i",
    type=click.IntRange(1, 240),
    default=None,
    help="循环间隔（分钟），默认使用 SCAN_INTERVAL_MIN",
)
def loop(interval_min: int | None) -> None:
    """按固定节拍循环执行；周期超时则跳过错过的节拍。Ctrl+C 停止。"""
    overrides = {"scan_interval_min": interval_min} if interval_min else {}
    settings = _load_settings(**overrides)
    logger = get_logger("ai_futures.main")
    logger.info("starting_loop", interval_min=settings.scan_interval_min)

    with _agent_session(settings) as agent:
        try:
            agent.run()
        except KeyboardInterrupt:
            logger.info("loop_stopped", total_cycles=agent.call_count)


@cli.command("close")
@click.argument("symbol")
@click.argument("side", type=click.Choice(["long", "short"], case_sensitive=False))
def close_position(symbol: str, side: str) -> None:
    """手动平仓，并记录一次交易结果。"""
    settings = _load_settings()
    with _agent_session(settings) as agent:
        try:
            outcome = agent.manual_close_position(symbol, side)
        except PositionNotFoundError as exc:
            raise click.ClickException(str(exc)) from exc
    if outcome is None:
        click.echo(f"{symbol.upper()} {side.lower()} closed (outcome already recorded)")
    else:
        click.echo(
            f"{outcome.symbol} {outcome.side} closed: pnl {outcome.pnl:+.2f} USDT "
            f"({outcome.pnl_pct:+.1f}%), held {outcome.duration_minutes} min"
        )


def _status_sections(settings: Settings, paused: bool) -> list[tuple[str, list[str]]]:
    def configured(value: str) -> str:
        return "configured" if value else "not configured"

    learning = (
        f"every {settings.ai_learn_interval} cycles" if settings.enable_ai_learning else "off"
    )
    return [
        (
            "Trader",
            [
                f"Mode: {settings.mode.value}",
                f"Name: {settings.trader_name}",
                f"Paused: {'Yes' if paused else 'No'}",
                f"Initial balance: {settings.initial_balance:.2f} USDT",
            ],
        ),
        (
            "API",
            [
                f"Binance: {configured(settings.binance_api_key)}"
                f" ({'testnet' if settings.binance_testnet else 'mainnet'})",
                f"OpenRouter: {configured(settings.openrouter_api_key)}",
                f"Model: {settings.openrouter_model}",
            ],
        ),
        (
            "Risk",
            [
                f"Leverage cap BTC/ETH / altcoins: "
                f"{settings.btc_eth_leverage}x / {settings.altcoin_leverage}x",
                f"Max positions: {settings.max_positions}",
                f"Max daily loss / drawdown: "
                f"{settings.max_daily_loss_pct}% / {settings.max_drawdown_pct}%",
                f"Cooldown: {settings.stop_trading_minutes} min",
            ],
        ),
        (
            "Schedule",
            [
                f"Scan interval: {settings.scan_interval_min} min",
                f"Coin pool: {', '.join(settings.coin_pool)}",
                f"AI learning: {learning}",
            ],
        ),
        (
            "Storage",
            [
                f"Database: {settings.db_path}",
                f"Log: {settings.log_level} / {settings.log_format.value}",
            ],
        ),
    ]


@cli.command()
def status() -> None:
    """显示交易员状态与配置摘要。"""
    settings = _load_settings()
    store = _open_store(settings)
    try:
        paused = bool(store.get_runtime_state())
    finally:
        store.close()

    click.echo(f"AI Futures Trader - {settings.trader_id}")
    for title, rows in _status_sections(settings, paused):
        click.echo(f"[{title}]")
        for row in rows:
            click.echo(f"   {row}")

    missing = settings.validate_for_live() if settings.is_live_mode else []
    if missing:
        click.echo(f"[ERROR] Live mode missing: {', '.join(missing)}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, default=False, help="以 JSON 格式输出")
def performance(as_json: bool) -> None:
    """显示历史交易绩效分析。"""
    settings = _load_settings()
    store = _open_store(settings)
    try:
        analysis = PerformanceAnalyzer(
            store, premature_minutes=settings.premature_close_minutes
        ).analyze(settings.performance_lookback_cycles)
    finally:
        store.close()

    if as_json:
        click.echo(json.dumps(analysis.to_dict(), ensure_ascii=False, indent=2))
        return

    click.echo(
        f"Trades: {analysis.total_trades} "
        f"(win {analysis.winning_trades} / loss {analysis.losing_trades}), "
        f"win rate {analysis.win_rate:.1f}%"
    )
    click.echo(f"Avg win / loss: {analysis.avg_win:.2f} / {analysis.avg_loss:.2f}")
    click.echo(
        f"Profit factor {analysis.profit_factor:.2f} | Sharpe {analysis.sharpe_ratio:.2f} "
        f"| Max drawdown {analysis.max_drawdown_pct:.2f}%"
    )
    for label, side in (("Long", analysis.long), ("Short", analysis.short)):
        click.echo(
            f"{label}: {side.trades} trades, win rate {side.win_rate:.1f}%, "
            f"avg pnl {side.avg_pnl:.2f}"
        )
    if analysis.best_symbol:
        click.echo(f"Best / worst symbol: {analysis.best_symbol} / {analysis.worst_symbol}")


def _set_paused(paused: bool) -> None:
    settings = _load_settings()
    store = _open_store(settings)
    try:
        store.save_runtime_state(paused)
    finally:
        store.close()
    get_logger("ai_futures.main").info("paused_flag_saved", paused=paused)
    click.echo(f"Trader {settings.trader_id}: {'paused' if paused else 'resumed'}")


@cli.command()
def pause() -> None:
    """暂停交易（持久化，重启后仍保持暂停）。"""
    _set_paused(True)


@cli.command()
def resume() -> None:
    """恢复交易。"""
    _set_paused(False)


@cli.command()
def check() -> None:
    """检查依赖包与 .env 配置文件。"""
    missing = [name for name, _ in _DEPENDENCIES if importlib.util.find_spec(name) is None]
    for name, desc in _DEPENDENCIES:
        marker = "MISSING" if name in missing else "OK"
        click.echo(f"  [{marker}] {name} - {desc}")

    if not Path(".env").exists():
        click.echo("  [WARN] .env not found, using defaults")
    if missing:
        click.echo("[ERROR] Some dependencies missing. Run: pip install -e .")
        sys.exit(1)
    click.echo("[OK] All dependency checks passed")


# 支持 python -m ai_futures.main 调用
if __name__ == "__main__":
    cli()
