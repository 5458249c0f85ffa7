import argparse
import datetime
import sys
import threading

from config.env_settings import load_env_settings
from config.trading_core_config import get_config, validate_config
from src.brokers.bybit.bybit_client import create_exchange_client
from src.core.database import init_database, db_manager
from src.services.order_service import OrderService
from src.trading.execution.cycle_scheduler import CycleScheduler
from src.trading.execution.trading_cycle import TradingCycleOrchestrator
from src.trading.positions.order_monitor import PendingOrderMonitor
# <Context-Aware Logger Integration - Begin>
from src.core.context_aware_logger import get_context_logger, start_trading_session, end_trading_session, TradingEventType
# <Context-Aware Logger Integration - End>


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="DOGE breakout trading system")
    parser.add_argument(
        "--env",
        choices=["testnet", "mainnet"],
        default=None,
        help="Exchange environment (default: TRADING_ENVIRONMENT or testnet)",
    )
    parser.add_argument("--once", action="store_true", help="Run a single trading cycle and exit")
    parser.add_argument("--stats", action="store_true", help="Print trading and PnL statistics and exit")
    parser.add_argument("--delete-order", metavar="ORDER_ID", help="Soft delete an order by exchange order id")
    parser.add_argument("--purge-audit-days", type=int, metavar="N",
                        help="Delete audit records older than N days and exit")
    return parser


def print_statistics(order_service: OrderService, symbol: str) -> None:
    stats = order_service.get_trading_statistics(symbol)
    pnl = order_service.get_pnl_statistics(symbol)
    print(f"📊 Trading statistics for {symbol}")
    print(f"   Orders: {stats.total_orders} total, {stats.pending_orders} pending, {stats.done_orders} done")
    print(f"   Profitable: {stats.profitable_orders}  Losing: {stats.losing_orders}  Win rate: {stats.win_rate:.2f}%")
    print(f"   PnL: total {pnl.total_pnl:.8f}, avg {pnl.avg_pnl:.8f}, max {pnl.max_pnl:.8f}, min {pnl.min_pnl:.8f}")
    print(f"   PnL%: avg {pnl.avg_pnl_percentage:.4f}, max {pnl.max_pnl_percentage:.4f}, "
          f"min {pnl.min_pnl_percentage:.4f}")


def main(argv=None) -> int:
    context_logger = get_context_logger()
    args = build_parser().parse_args(argv)
    settings = load_env_settings()
    context_logger.set_log_level(settings.log_level)

    environment = args.env or settings.environment
    config = get_config(environment)
    is_valid, message = validate_config(config)
    if not is_valid:
        print(f"❌ Invalid configuration: {message}")
        return 2

    session_file = start_trading_session()
    print(f"📝 Trading session started: {session_file}")
    scheduler = None

    try:
        context_logger.log_event(
            TradingEventType.SYSTEM_HEALTH,
            "Trading system starting",
            symbol=config['strategy']['symbol'],
            context_provider={
                "environment": environment,
                "placement_strategy": config['exchange']['placement_strategy'],
                "start_time": lambda: datetime.datetime.now().isoformat(),
                "session_file": lambda: session_file
            }
        )

        init_database(settings.db_file_path)
        # The scoped registry hands each job thread its own session
        order_service = OrderService(db_manager.Session, changed_by=config['audit']['changed_by'])
        symbol = config['strategy']['symbol']

        # <Administrative Commands - Begin>
        if args.stats:
            print_statistics(order_service, symbol)
            return 0
        if args.delete_order:
            order_service.soft_delete_order(args.delete_order)
            print(f"🗑️  Order {args.delete_order} soft deleted")
            return 0
        if args.purge_audit_days is not None:
            removed = order_service.purge_audit_records(args.purge_audit_days)
            print(f"🧹 Purged {removed} audit records older than {args.purge_audit_days} days")
            return 0
        # <Administrative Commands - End>

        if not settings.has_credentials:
            print("❌ BYBIT_API_KEY and BYBIT_SECRET_KEY must be set")
            return 2

        exchange = create_exchange_client(config, settings.api_key, settings.secret_key)
        cancel_event = threading.Event()
        orchestrator = TradingCycleOrchestrator.from_config(config, exchange, order_service,
                                                            cancel_event=cancel_event)

        if args.once:
            report = orchestrator.run_cycle()
            print(f"✅ Cycle finished: {report.outcome.value}")
            return 0

        scheduler = CycleScheduler.from_config(config, stop_event=cancel_event)
        scheduler.add_job("trading_cycle", orchestrator.run_cycle,
                          config['scheduling']['interval_seconds'],
                          align=config['scheduling']['align_to_interval'])

        # <Pending Order Monitor Job - Begin>
        if config['order_monitor']['enabled']:
            monitor = PendingOrderMonitor.from_config(config, exchange, order_service)
            scheduler.add_job("order_monitor", monitor.run_once, config['order_monitor']['interval_seconds'])
        # <Pending Order Monitor Job - End>

        retention_days = config['audit']['retention_days']
        scheduler.add_job("audit_purge", lambda: order_service.purge_audit_records(retention_days),
                          config['audit']['purge_interval_seconds'])

        scheduler.start()
        print("🚀 Scheduler running. Press Ctrl+C to stop.")
        while scheduler.is_running():
            scheduler.wait(timeout=1.0)
        return 0

    except KeyboardInterrupt:
        print("\n🛑 Shutdown requested by user")
        context_logger.log_event(
            TradingEventType.SYSTEM_HEALTH,
            "Trading system shutdown requested by user",
            decision_reason="USER_INTERRUPT"
        )
        return 0

    finally:
        if scheduler is not None:
            scheduler.stop()
        db_manager.close()
        end_trading_session()
        print("✅ Trading session ended")


if __name__ == "__main__":
    sys.exit(main())
