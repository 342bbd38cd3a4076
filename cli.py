"""
命令行工具 - 回测、压力测试、迭代与前向调参
"""
import argparse
import asyncio
import json
import uuid

from config.validator import CostModel
from strategy_lab.adapters.cache.memory_cache import MemoryCache
from strategy_lab.adapters.scheduler import AsyncioJobScheduler
from strategy_lab.data_provider import FrameBarReader, load_bars_csv
from strategy_lab.domain.models import BarSeries, DatasetRef, GroupState
from strategy_lab.engine import run_backtest
from strategy_lab.repository_factory import get_record_store
from strategy_lab.services.data_service import DataService
from strategy_lab.services.iteration_service import IterationService
from strategy_lab.services.objective import score
from strategy_lab.services.stress_service import run_stress_test
from strategy_lab.services.tuning_service import TuningService
from strategy_lab.templates import get_template_schema
from utils.logger_utils import get_logger

logger = get_logger("cli")


def _load_params(variant: str, raw: str = None):
    schema = get_template_schema(variant)
    params = json.loads(raw) if raw else {}
    return schema, schema.normalize(params)


def _print_metrics(metrics):
    print(f"   交易数: {metrics.trade_count}")
    print(f"   胜率: {metrics.win_rate:.2f}%")
    print(f"   净盈亏: {metrics.net_pnl:+.2f}")
    print(f"   盈亏比: {metrics.profit_factor:.2f}")
    print(f"   最大回撤: {metrics.max_drawdown:.2%}")
    print(f"   Sharpe: {metrics.sharpe:.3f}")
    print(f"   手续费: {metrics.fees_total:.2f}  滑点: {metrics.slippage_total:.2f}")


def cmd_backtest(csv_path: str, variant: str, params_json: str = None):
    """运行回测"""
    _, params = _load_params(variant, params_json)
    bars = BarSeries.from_frame(load_bars_csv(csv_path))
    trades, metrics = run_backtest(bars, params, variant, CostModel())

    print(f"\n📊 回测结果 ({variant}, {len(bars)} 根K线):")
    _print_metrics(metrics)
    print(f"   评分: {score(metrics):.4f}")


def cmd_stress(csv_path: str, variant: str, params_json: str = None, seed: int = None):
    """运行压力测试"""
    _, params = _load_params(variant, params_json)
    bars = BarSeries.from_frame(load_bars_csv(csv_path))
    report = run_stress_test(params, bars, variant, CostModel(), seed=seed)

    print(f"\n🧪 压力测试 ({report.tests_passed}/{report.tests_total} 通过):")
    for result in report.results:
        emoji = "✅" if result.check.passed else "❌"
        print(f"   {emoji} {result.check.describe()}")
    print(f"\n{'✅ 通过' if report.stress_passed else '❌ 未通过'}")


async def _iterate(csv_path: str, variant: str, iterations: int, aggressiveness: float,
                   stop_on_failure: bool, db_path: str = None):
    schema = get_template_schema(variant)
    group = GroupState(
        group_id=str(uuid.uuid4()),
        strategy_variant=variant,
        schema=schema,
        bars=BarSeries.from_frame(load_bars_csv(csv_path)),
        cost_model=CostModel(),
        objective=None,
    )
    service = IterationService(get_record_store(db_path))
    results = await service.run_iteration_batch(
        group, iterations, aggressiveness, {"stop_on_failure": stop_on_failure}
    )
    return group, results


def cmd_iterate(csv_path: str, variant: str, iterations: int, aggressiveness: float,
                stop_on_failure: bool = False, db_path: str = None):
    """运行冠军/挑战者迭代"""
    group, results = asyncio.run(
        _iterate(csv_path, variant, iterations, aggressiveness, stop_on_failure, db_path)
    )
    print(f"\n🔁 迭代完成 group_id={group.group_id}")
    for it in results:
        emoji = "✅" if it.accepted else "❌"
        print(f"   {emoji} #{it.sequence_number} {it.score_before:.4f} -> {it.score_after:.4f}"
              + ("" if it.accepted else f"  ({it.reject_reason})"))
    print(f"\n🏆 冠军 {group.champion.version_id} 评分 {group.champion.score:.4f}")
    print(json.dumps(group.champion.params, indent=2, ensure_ascii=False))


async def _tune(csv_path: str, variant: str, max_trials: int, batch_size: int,
                aggressiveness: float, db_path: str = None):
    reader = FrameBarReader()
    reader.add("CSV", "file", load_bars_csv(csv_path))
    store = get_record_store(db_path)
    scheduler = AsyncioJobScheduler()
    service = TuningService(
        store, DataService(reader, MemoryCache()), scheduler, batch_size=batch_size
    )
    schema = get_template_schema(variant)
    job = await service.start_job(
        group_id=str(uuid.uuid4()),
        dataset=DatasetRef("CSV", "file"),
        strategy_variant=variant,
        schema=schema,
        champion_params=schema.defaults(),
        max_trials=max_trials,
        aggressiveness=aggressiveness,
    )
    await scheduler.drain()
    return await store.get(TuningService.JOBS, job.job_id)


def cmd_tune(csv_path: str, variant: str, max_trials: int, batch_size: int,
             aggressiveness: float, db_path: str = None):
    """运行前向调参（分批续跑直至完成）"""
    record = asyncio.run(_tune(csv_path, variant, max_trials, batch_size, aggressiveness, db_path))
    print(f"\n🎯 调参任务 {record['id']} 状态: {record['status']}")
    print(f"   试验: {record['trials_completed']}/{record['max_trials']}  批次: {record['batch_number']}")
    print(f"   最佳验证评分: {record.get('best_score') or 0.0:.4f}")
    if record.get("error"):
        print(f"   ⚠️  错误: {record['error']}")
    print(json.dumps(record["champion"]["params"], indent=2, ensure_ascii=False))


def main():
    parser = argparse.ArgumentParser(description="策略实验室命令行工具")
    subparsers = parser.add_subparsers(dest='command', help='可用命令')

    def add_common(p):
        p.add_argument('--csv', required=True, help='K线 CSV 文件（timestamp,open,high,low,close,volume）')
        p.add_argument('--variant', default='momentum_breakout_v1', help='策略模板')

    # backtest
    p_bt = subparsers.add_parser('backtest', help='运行回测')
    add_common(p_bt)
    p_bt.add_argument('--params', type=str, help='参数 JSON')

    # stress
    p_stress = subparsers.add_parser('stress', help='运行压力测试')
    add_common(p_stress)
    p_stress.add_argument('--params', type=str, help='参数 JSON')
    p_stress.add_argument('--seed', type=int, help='删除K线的随机种子')

    # iterate
    p_it = subparsers.add_parser('iterate', help='冠军/挑战者迭代')
    add_common(p_it)
    p_it.add_argument('--iterations', type=int, default=10, help='迭代轮数')
    p_it.add_argument('--aggressiveness', type=float, default=0.5, help='变异激进程度 [0, 1]')
    p_it.add_argument('--stop-on-failure', action='store_true', help='首次拒绝即停止')
    p_it.add_argument('--db', type=str, help='SQLite 路径')

    # tune
    p_tune = subparsers.add_parser('tune', help='前向调参')
    add_common(p_tune)
    p_tune.add_argument('--max-trials', type=int, default=50, help='最大试验数')
    p_tune.add_argument('--batch-size', type=int, default=10, help='每批试验数')
    p_tune.add_argument('--aggressiveness', type=float, default=0.5, help='变异激进程度 [0, 1]')
    p_tune.add_argument('--db', type=str, help='SQLite 路径')

    args = parser.parse_args()

    if args.command == 'backtest':
        cmd_backtest(args.csv, args.variant, args.params)
    elif args.command == 'stress':
        cmd_stress(args.csv, args.variant, args.params, args.seed)
    elif args.command == 'iterate':
        cmd_iterate(args.csv, args.variant, args.iterations, args.aggressiveness,
                    args.stop_on_failure, args.db)
    elif args.command == 'tune':
        cmd_tune(args.csv, args.variant, args.max_trials, args.batch_size,
                 args.aggressiveness, args.db)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
