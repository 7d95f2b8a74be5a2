"""
Core Module

Contains fundamental functionality:
- exceptions: Market data failures, trade rejections, contract violations
- logging: Logging infrastructure
- utils: Formatting and parsing helpers
- portfolio: Paper trading portfolio and protective levels
- price_cache: Per-token price history
"""
