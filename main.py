#!/usr/bin/env python3
"""
Entrypoint for autospawn.

Wires sentiment source, analysis engine, judge, executor, health supervisor
and spawner from autospawn.yaml (+ whitelisted env overrides), then runs the
spawn loop and the health loop side by side until interrupted.

Startup failures (missing config, missing signer in live mode, unreachable
venue) are fatal.
"""

import argparse
import asyncio
from pathlib import Path
from typing import Any, Dict, Optional

from eth_account import Account

from agent_factory import AgentRegistry
from agent_spawner import AgentSpawner, DEFAULT_TOKENS, SpawnerConfig
from analysis_engine import AnalysisEngine
from command_interface import CommandInterface
from config_env import get_path, load_config
from env_utils import AUTOSPAWN_CONFIG_PATH, AUTOSPAWN_RUNTIME_DIR, env_str, resolve_path
from executor import ExecutionConfig, Executor
from health_supervisor import HealthConfig, HealthSupervisor
from llm_client import build_client
from logging_utils import get_logger, setup_logging
from opportunity_judge import JudgeConfig, OpportunityEvaluator
from sentiment_source import build_sentiment_source


def _cfg(config: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    return get_path(config, ("config",) + keys, default)


def build_spawner_config(config: Dict[str, Any]) -> SpawnerConfig:
    tokens = _cfg(config, "monitored_tokens", default=None) or list(DEFAULT_TOKENS)
    return SpawnerConfig(
        monitored_tokens=[str(t).upper() for t in tokens],
        monitor_interval=float(_cfg(config, "spawner", "monitor_interval_sec", default=300)),
        min_sentiment=float(_cfg(config, "spawner", "min_sentiment", default=0.3)),
        min_confidence=float(_cfg(config, "spawner", "min_confidence", default=0.7)),
        max_agents_per_token=int(_cfg(config, "spawner", "max_agents_per_token", default=3)),
        min_capital=float(_cfg(config, "spawner", "min_capital", default=0.1)),
        max_capital=float(_cfg(config, "spawner", "max_capital", default=1.0)),
        trade_ledger_size=int(_cfg(config, "spawner", "trade_ledger_size", default=100)),
        trade_history_view=int(_cfg(config, "spawner", "trade_history_view", default=10)),
        termination_view=int(_cfg(config, "spawner", "termination_view", default=5)),
    )


def build_judge_config(config: Dict[str, Any]) -> JudgeConfig:
    return JudgeConfig(
        min_sentiment=float(_cfg(config, "spawner", "min_sentiment", default=0.3)),
        min_confidence=float(_cfg(config, "spawner", "min_confidence", default=0.7)),
        min_capital=float(_cfg(config, "spawner", "min_capital", default=0.1)),
        max_capital=float(_cfg(config, "spawner", "max_capital", default=1.0)),
        max_slippage=float(_cfg(config, "judge", "max_slippage", default=0.005)),
        stop_loss_pct=float(_cfg(config, "judge", "stop_loss_pct", default=5.0)),
        target_profit_pct=float(_cfg(config, "judge", "target_profit_pct", default=15.0)),
    )


def build_health_config(config: Dict[str, Any]) -> HealthConfig:
    return HealthConfig(
        max_loss=float(_cfg(config, "health", "max_loss_pct", default=20.0)),
        max_inactivity=float(_cfg(config, "health", "max_inactivity_hours", default=24.0)),
        min_roi=float(_cfg(config, "health", "min_roi_pct", default=-50.0)),
        check_interval=float(_cfg(config, "health", "check_interval_sec", default=60)),
    )


def build_execution_config(config: Dict[str, Any], dry_run_flag: bool = False) -> ExecutionConfig:
    ex = _cfg(config, "executor", default={}) or {}
    paper = ex.get("paper") or {}
    return ExecutionConfig(
        dry_run=bool(dry_run_flag or ex.get("dry_run", True)),
        rpc_url=str(ex.get("rpc_url") or "https://mainnet.base.org"),
        base_asset=str(ex.get("base_asset") or "ETH").upper(),
        quote_asset=str(ex.get("quote_asset") or "USDC").upper(),
        tokens={str(k).upper(): str(v) for k, v in (ex.get("tokens") or {}).items()},
        router_address=str(ex.get("router_address") or ExecutionConfig.router_address),
        factory_address=str(ex.get("factory_address") or ExecutionConfig.factory_address),
        pool_fee=int(ex.get("pool_fee", 3000)),
        gas_limit=int(ex.get("gas_limit", 300_000)),
        slippage=float(ex.get("slippage", 0.005)),
        deadline_sec=int(ex.get("deadline_sec", 1200)),
        paper_starting_balance=float(paper.get("starting_balance", 10.0)),
        paper_prices={str(k).upper(): float(v) for k, v in (paper.get("prices") or {}).items()},
        paper_token_balances={
            str(k).upper(): float(v) for k, v in (paper.get("token_balances") or {}).items()
        },
    )


def load_signer() -> Optional[Any]:
    """Treasury signer from AUTOSPAWN_PRIVATE_KEY or MNEMONIC; None if neither is set."""
    private_key = env_str("AUTOSPAWN_PRIVATE_KEY")
    if private_key:
        return Account.from_key(private_key)
    mnemonic = env_str("MNEMONIC")
    if mnemonic:
        Account.enable_unaudited_hdwallet_features()
        return Account.from_mnemonic(mnemonic)
    return None


async def build_spawner(config: Dict[str, Any], dry_run: bool = False) -> AgentSpawner:
    exec_config = build_execution_config(config, dry_run)
    account = None if exec_config.dry_run else load_signer()
    executor = await Executor.create(exec_config, account=account)

    analysis = _cfg(config, "analysis", default={}) or {}
    timeout = float(analysis.get("timeout_sec", 30))
    engine = AnalysisEngine(
        build_client(timeout_sec=timeout),
        model=str(analysis.get("model") or "gpt-4-turbo-preview"),
        max_tokens=int(analysis.get("max_tokens", 500)),
        temperature=float(analysis.get("temperature", 0.3)),
        timeout_sec=timeout,
    )

    sentiment = _cfg(config, "sentiment", default={}) or {}
    source = build_sentiment_source(
        env_str("TWITTER_BEARER_TOKEN"),
        max_results=int(sentiment.get("max_results", 100)),
        timeout_sec=float(sentiment.get("timeout_sec", 10)),
    )

    health_config = build_health_config(config)
    supervisor = HealthSupervisor(
        executor,
        AgentRegistry(),
        default_config=health_config,
        audit_path=resolve_path(
            _cfg(config, "audit", "termination_log", default=None)
            or str(Path(AUTOSPAWN_RUNTIME_DIR) / "terminations.jsonl")
        ),
    )
    return AgentSpawner(
        build_spawner_config(config),
        source=source,
        engine=engine,
        judge=OpportunityEvaluator(build_judge_config(config)),
        executor=executor,
        supervisor=supervisor,
        health_config=health_config,
    )


async def run(config: Dict[str, Any], *, dry_run: bool = False, once: bool = False) -> int:
    log = get_logger("main")
    spawner = await build_spawner(config, dry_run)
    commands = CommandInterface(spawner)
    try:
        if once:
            await spawner.check_and_spawn_agents()
            await spawner.supervisor.run_due_checks()
            status = await commands.handle_command("status")
            log.info(f"Single pass complete: {status.get('data')}")
            return 0

        stop_event = asyncio.Event()
        tasks = [
            asyncio.create_task(spawner.run(stop_event), name="spawner"),
            asyncio.create_task(spawner.supervisor.run(stop_event), name="health"),
        ]
        try:
            await asyncio.gather(*tasks)
        finally:
            stop_event.set()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        return 0
    finally:
        await spawner.source.close()
        await spawner.executor.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="autospawn: sentiment-driven agent spawner")
    parser.add_argument("--config", default=AUTOSPAWN_CONFIG_PATH, help="Path to autospawn.yaml")
    parser.add_argument("--dry-run", action="store_true", help="Force the in-memory paper venue")
    parser.add_argument("--once", action="store_true", help="Run one spawn tick and one health pass, then exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-file", help="Also write logs to this file")
    args = parser.parse_args()

    log = setup_logging("main", log_file=args.log_file, verbose=args.verbose)

    config = load_config(Path(args.config))
    try:
        return asyncio.run(run(config, dry_run=args.dry_run, once=args.once))
    except KeyboardInterrupt:
        log.info("Shutting down...")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
