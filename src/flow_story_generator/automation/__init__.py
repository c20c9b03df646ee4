"""Workflow automation components.

- Settings loaded from `.env`
- Structured logging
- The wait / step / retry / controller engine
- Cross-context messaging and the download queue
"""
