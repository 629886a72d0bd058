"""
市场指标命令行工具

使用方法:
    marketpulse overview
    marketpulse overview --refresh --max-age 3600
    marketpulse overview --json
    marketpulse indicator vix --refresh
    marketpulse quote SPY
    marketpulse collect sp500 vix
    marketpulse providers
    marketpulse stats
    marketpulse cleanup --days 30
"""

import asyncio
import json
from datetime import timedelta
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from marketpulse.models import DEFAULT_INDICATORS, utc_now
from marketpulse.schemas import IndicatorData
from marketpulse.services.collector import MARKET_CHAIN
from marketpulse.services.factory import create_market_service
from marketpulse.utils.config import load_config
from marketpulse.utils.logger import setup_logger

app = typer.Typer(help="市场指标获取与缓存工具")
console = Console()


# ── 辅助函数 ──────────────────────────────────────────────────────────────────

def _prepare(config_file: Optional[str], verbose: bool):
    """加载配置并初始化日志"""
    config = load_config(config_file)
    setup_logger(config.logging, level="DEBUG" if verbose else "WARNING")
    return config


def _format_value(data_value: Dict[str, Any]) -> str:
    """按载荷类型格式化指标值"""
    if "price" in data_value:
        pct = data_value.get("change_percent") or 0.0
        color = "green" if pct >= 0 else "red"
        return f"{data_value['price']:,.2f} [{color}]({pct:+.2f}%)[/{color}]"
    if "classification" in data_value:
        return f"{data_value['value']} ({data_value['classification']})"
    if "value" in data_value:
        unit = data_value.get("unit") or ""
        return f"{data_value['value']:,.2f} {unit}".strip()
    return json.dumps(data_value, ensure_ascii=False)


def _source_style(source: str) -> str:
    return {"cache": "green", "realtime": "cyan", "fallback": "yellow"}.get(source, "white")


def _indicator_table(items: List[IndicatorData], title: str) -> Table:
    table = Table(title=title)
    table.add_column("指标", style="cyan")
    table.add_column("值", justify="right")
    table.add_column("数据源", style="white")
    table.add_column("来源", justify="center")
    table.add_column("年龄(h)", justify="right")
    table.add_column("新鲜度", justify="right")
    table.add_column("状态", justify="center")

    for item in items:
        style = _source_style(item.source)
        status = "[yellow]过期[/yellow]" if item.freshness.is_stale else "[green]新鲜[/green]"
        table.add_row(
            item.indicator_type,
            _format_value(item.data_value),
            item.data_source,
            f"[{style}]{item.source}[/{style}]",
            str(item.freshness.age_hours),
            f"{item.freshness.freshness_score:.1f}",
            status,
        )
    return table


# ── 命令 ──────────────────────────────────────────────────────────────────────

@app.command()
def overview(
    refresh: bool = typer.Option(False, "--refresh", "-r", help="强制从数据源刷新"),
    max_age: Optional[int] = typer.Option(None, "--max-age", help="最大缓存时长（秒）"),
    indicators: Optional[List[str]] = typer.Option(None, "--indicator", "-i", help="指定指标（可多次使用）"),
    as_json: bool = typer.Option(False, "--json", help="以 JSON 输出"),
    config_file: Optional[str] = typer.Option(None, "--config", help="配置文件路径"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="详细输出"),
):
    """
    显示市场概览
    """
    config = _prepare(config_file, verbose)

    async def _run():
        async with await create_market_service(config) as service:
            result = await service.get_market_overview(
                max_age=max_age,
                force_refresh=refresh,
                indicators=indicators or None,
            )
            await service.wait_for_background()
            return result

    result = asyncio.run(_run())

    if as_json:
        console.print_json(result.model_dump_json())
        return

    console.print()
    console.print(_indicator_table(result.indicators, "市场概览"))

    info = result.cache_info
    console.print(Panel(
        f"来源: [bold]{result.source}[/bold]    最后更新: {result.last_updated}\n"
        f"指标: {info.total_indicators}/{info.requested_indicators}    "
        f"新鲜: {info.fresh_indicators}    过期: {info.stale_indicators}    "
        f"缓存命中率: {info.cache_hit_rate}%",
        title="缓存信息",
        border_style="blue",
    ))
    if result.unavailable:
        console.print(f"[red]不可用: {', '.join(result.unavailable)}[/red]")
    if result.rate_limited:
        console.print(f"[yellow]全部数据源限流: {', '.join(result.rate_limited)}[/yellow]")
    console.print()


@app.command()
def indicator(
    indicator_type: str = typer.Argument(..., help=f"指标类型（{', '.join(DEFAULT_INDICATORS)}）"),
    refresh: bool = typer.Option(False, "--refresh", "-r", help="强制从数据源刷新"),
    max_age: Optional[int] = typer.Option(None, "--max-age", help="最大缓存时长（秒）"),
    config_file: Optional[str] = typer.Option(None, "--config", help="配置文件路径"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="详细输出"),
):
    """
    获取单个指标
    """
    config = _prepare(config_file, verbose)

    async def _run():
        async with await create_market_service(config) as service:
            reading = await service.get_indicator(indicator_type, override_max_age=max_age, force_refresh=refresh)
            await service.wait_for_background()
            return reading

    try:
        reading = asyncio.run(_run())
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if reading is None:
        console.print(f"[red]{indicator_type} 暂无可用数据[/red]")
        raise typer.Exit(1)

    console.print()
    console.print(_indicator_table([reading.to_data()], indicator_type))
    console.print()


@app.command()
def quote(
    symbol: str = typer.Argument(..., help="资产代码（如 SPY、QQQ、VIX）"),
    config_file: Optional[str] = typer.Option(None, "--config", help="配置文件路径"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="详细输出"),
):
    """
    通过行情回退链获取实时报价（不写缓存）
    """
    config = _prepare(config_file, verbose)

    async def _run():
        async with await create_market_service(config) as service:
            return await service.collector.chains[MARKET_CHAIN].fetch_quote(symbol.upper())

    result = asyncio.run(_run())

    if not result.success:
        message = result.rate_limit_message or "所有数据源均未能获取报价"
        console.print(f"[red]{symbol.upper()}: {message}[/red]")
        raise typer.Exit(1)

    data = result.data
    table = Table(title=f"{data.symbol} 报价")
    table.add_column("项目", style="cyan")
    table.add_column("值", style="yellow")
    table.add_row("价格", f"{data.price:,.4f}")
    table.add_row("涨跌", f"{data.change:+,.4f}")
    table.add_row("涨跌幅", f"{data.change_percent:+.2f}%")
    if data.volume is not None:
        table.add_row("成交量", f"{data.volume:,.0f}")
    if data.as_of:
        table.add_row("时间", data.as_of)
    table.add_row("数据源", result.provider)
    console.print(table)


@app.command()
def collect(
    indicator_types: Optional[List[str]] = typer.Argument(None, help="指标类型（默认全部）"),
    config_file: Optional[str] = typer.Option(None, "--config", help="配置文件路径"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="详细输出"),
):
    """
    从数据源采集指标并写入缓存
    """
    config = _prepare(config_file, verbose)

    async def _run():
        async with await create_market_service(config) as service:
            return await service.collector.collect_all(indicator_types or None)

    summary = asyncio.run(_run())

    table = Table(title="采集结果")
    table.add_column("指标", style="cyan")
    table.add_column("结果", justify="center")
    table.add_column("数据源")
    table.add_column("说明", style="dim")
    for indicator_type, result in summary.results.items():
        if result.success:
            table.add_row(indicator_type, "[green]成功[/green]", result.provider, "")
        else:
            status = "[yellow]限流[/yellow]" if result.is_rate_limited else "[red]失败[/red]"
            table.add_row(indicator_type, status, result.provider, result.message or "")
    console.print(table)
    console.print(f"成功 {len(summary.collected)}/{len(summary.results)}")

    if summary.errors and not summary.collected:
        raise typer.Exit(1)


@app.command()
def providers(
    config_file: Optional[str] = typer.Option(None, "--config", help="配置文件路径"),
):
    """
    显示数据源配置与状态
    """
    config = _prepare(config_file, False)

    async def _run():
        async with await create_market_service(config) as service:
            return service.get_provider_status()

    status = asyncio.run(_run())

    table = Table(title="数据源")
    table.add_column("回退链", style="cyan")
    table.add_column("数据源", style="white")
    table.add_column("优先级", justify="right")
    table.add_column("状态", justify="center")
    table.add_column("每日上限", justify="right")
    for item in status:
        state = "[green]可用[/green]" if item.available else "[red]不可用[/red]"
        limit = "无限制" if item.usage.limit <= 0 else str(item.usage.limit)
        table.add_row(item.chain, item.name, str(item.priority), state, limit)
    console.print(table)


@app.command()
def stats(
    config_file: Optional[str] = typer.Option(None, "--config", help="配置文件路径"),
):
    """
    显示缓存统计
    """
    config = _prepare(config_file, False)

    async def _run():
        async with await create_market_service(config) as service:
            return await service.get_cache_stats()

    result = asyncio.run(_run())

    table = Table(title="缓存统计")
    table.add_column("项目", style="cyan")
    table.add_column("值", style="yellow")
    for key, value in result.items():
        if isinstance(value, dict):
            value = json.dumps(value, ensure_ascii=False)
        elif isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        table.add_row(key, str(value))
    console.print(table)


@app.command()
def cleanup(
    days: int = typer.Option(30, "--days", "-d", help="删除早于 N 天的历史记录"),
    config_file: Optional[str] = typer.Option(None, "--config", help="配置文件路径"),
):
    """
    清理历史（非活跃）缓存记录
    """
    config = _prepare(config_file, False)

    async def _run():
        async with await create_market_service(config) as service:
            return await service.store.cleanup_inactive(utc_now() - timedelta(days=days))

    count = asyncio.run(_run())
    console.print(f"[green]已删除 {count} 条历史记录[/green]")


def main():
    app()


if __name__ == "__main__":
    main()
