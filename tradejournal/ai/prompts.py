"""Prompt builders for the AI commentary endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


def _field(value: Any) -> str:
    return "" if value is None else str(value)


def trade_prediction_prompt(trade_data: Dict[str, Any], stats: Dict[str, Any]) -> str:
    instrument = trade_data.get("instrument")
    return (
        "You are an expert trading analyst. Predict trade outcome.\n\n"
        "SETUP:\n"
        f"{instrument} ({trade_data.get('direction') or '?'})\n"
        f"Entry: {_field(trade_data.get('entry_price'))}, "
        f"SL: {_field(trade_data.get('stop_loss'))}, "
        f"TP: {_field(trade_data.get('take_profit'))}\n"
        f"R:R: {stats['riskRewardRatio']}\n"
        f"Confluence: {trade_data.get('confluence') or 'None'}\n\n"
        f"HISTORY ({instrument}):\n"
        f"WinRate: {stats['instrumentWinRate']}%, "
        f"AvgWin: ${stats['avgWin']:.2f}, AvgLoss: ${stats['avgLoss']:.2f}\n\n"
        "Provide: Setup Assessment, Historical Insight, Key Considerations, Risk Alert. 200 words max."
    )


def performance_prompt(period: str, metrics: Dict[str, Any],
                       strategies: List[Dict[str, Any]],
                       categories: Dict[str, List[Dict[str, Any]]]) -> str:
    lines = [
        f"You are an expert trading coach. Review this trader's performance ({period}).",
        "",
        "METRICS:",
        f"Trades: {metrics['total_trades']}, WinRate: {metrics['win_rate']:.1f}%, "
        f"ProfitFactor: {metrics['profit_factor_label']}",
        f"NetPnL: ${metrics['net_pnl']:.2f}, AvgWin: ${metrics['avg_win']:.2f}, "
        f"AvgLoss: ${metrics['avg_loss']:.2f}, Expectancy: ${metrics['expected_value']:.2f}",
        f"AvgTradeTime: {metrics['avg_trade_time']:.0f} min",
    ]
    if strategies:
        lines += ["", "STRATEGIES:"]
        for s in strategies[:5]:
            lines.append(f"- {s['strategy']}: {s['total_trades']} trades, "
                         f"WinRate {s['win_rate']:.1f}%, PnL ${s['net_pnl']:.2f}")
    weekdays = categories.get("by_weekday") or []
    if weekdays:
        lines += ["", "BY WEEKDAY:"]
        lines += [f"- {d['label']}: {d['trades']} trades, PnL ${d['pnl']:.2f}" for d in weekdays]
    lines += ["", "Provide: Strengths, Weaknesses, Recommendations. 250 words max."]
    return "\n".join(lines)


def weekly_review_prompt(review: Dict[str, Any], metrics: Optional[Dict[str, Any]]) -> str:
    lines = [
        "Summarize this trader's weekly review in under 150 words.",
        f"Week: {review['week_start_date']} to {review['week_end_date']}",
        "",
        f"Went well: {review.get('went_well') or '-'}",
        f"Didn't go well: {review.get('didnt_go_well') or '-'}",
        f"Lessons: {review.get('lessons') or '-'}",
        f"Focus next week: {review.get('focus_next_week') or '-'}",
    ]
    if metrics and metrics.get("total_trades"):
        lines += [
            "",
            f"Trades: {metrics['total_trades']}, WinRate: {metrics['win_rate']:.1f}%, "
            f"NetPnL: ${metrics['net_pnl']:.2f}",
        ]
    lines += ["", "End with one concrete focus for next week."]
    return "\n".join(lines)
