import asyncio

from dataclasses import dataclass
from typing import Annotated

import cappa
import granian

from cappa.output import error_format
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text
from watchfiles import PythonFilter

from backoffice import __version__, load_all_models
from backoffice.common.log import setup_logging
from backoffice.core.conf import settings
from backoffice.database.db import create_tables, drop_tables
from backoffice.database.redis import redis_client
from backoffice.src.billing.credits.replenishment import replenish_plan_credits_job
from backoffice.src.billing.invoices.reminders import send_invoice_reminders_job
from backoffice.src.billing.webhooks.processor import replay_webhooks_job
from backoffice.utils.console import console

output_help = '\nFor more information, try "[cyan]--help[/]"'


class CustomReloadFilter(PythonFilter):
    """Custom reload filter"""

    def __init__(self) -> None:
        super().__init__(extra_extensions=['.json', '.yaml', '.yml'])


def describe(rows: list[tuple[str, str]]) -> Text:
    """Aligned key/value lines for the startup panels"""
    width = max(len(label) for label, _ in rows)
    content = Text()
    for i, (label, value) in enumerate(rows):
        if i:
            content.append('\n')
        content.append(f'{label.ljust(width)}  ', style='bold cyan')
        content.append(value, style='yellow')
    return content


async def init() -> None:
    rows = [
        ('PostgreSQL', f'{settings.DATABASE_HOST}:{settings.DATABASE_PORT}/{settings.DATABASE_SCHEMA}'),
        ('Redis database', str(settings.REDIS_DATABASE)),
        ('Credit cache prefix', settings.CREDIT_REDIS_PREFIX),
    ]
    console.print(Panel(describe(rows), title=f'backoffice v{__version__} init', border_style='cyan', padding=(1, 2)))
    ok = Prompt.ask('Recreate every billing table and clear the credit cache?', choices=['y', 'n'], default='n')
    if ok.lower() != 'y':
        console.print('Nothing changed', style='yellow')
        return

    load_all_models()
    try:
        with console.status('Recreating tables'):
            await drop_tables()
            await create_tables()
        with console.status('Clearing credit cache'):
            await redis_client.delete_prefix(settings.CREDIT_REDIS_PREFIX)
    except Exception as e:
        raise cappa.Exit(f'Initialization failed: {e}', code=1)
    console.print('Billing tables ready, start the service with [bold cyan]backoffice run[/bold cyan]', style='green')


def run(host: str, port: int, no_reload: bool, workers: int) -> None:  # noqa: FBT001
    workers = workers if no_reload else 1
    api_url = f'http://{host}:{port}{settings.FASTAPI_API_V1_PATH}'
    rows = [
        ('Environment', settings.ENVIRONMENT),
        ('API', api_url),
        ('Asaas webhook', f'{api_url}/webhooks/asaas'),
        ('Stripe webhook', f'{api_url}/webhooks/stripe'),
        ('Asaas mode', 'sandbox' if settings.ASAAS_SANDBOX else 'production'),
        ('Billing scheduler', 'on' if settings.BILLING_SCHEDULER_ENABLED else 'off'),
        ('Workers', str(workers) if no_reload else '1 (reload)'),
    ]
    if settings.FASTAPI_DOCS_URL:
        rows.append(('Docs', f'http://{host}:{port}{settings.FASTAPI_DOCS_URL}'))
    console.print(Panel(describe(rows), title=f'backoffice v{__version__}', border_style='purple', padding=(1, 2)))

    granian.Granian(
        target='backoffice.main:app',
        interface='asgi',
        address=host,
        port=port,
        reload=not no_reload,
        reload_filter=CustomReloadFilter,
        workers=workers,
    ).serve()


def print_job_result(title: str, result: dict[str, int]) -> None:
    table = Table(title=title, show_header=True, header_style='bold cyan')
    table.add_column('Outcome')
    table.add_column('Count', justify='right', style='yellow')
    for key, value in result.items():
        table.add_row(key, str(value))
    console.print(table)


async def run_job(title: str, job) -> None:
    setup_logging()
    load_all_models()
    try:
        result = await job()
    except Exception as e:
        raise cappa.Exit(f'{title} failed: {e}', code=1)
    print_job_result(title, result)


@cappa.command(help='Recreate the billing tables and clear the credit cache', default_long=True)
@dataclass
class Init:
    async def __call__(self) -> None:
        await init()


@cappa.command(help='Serve the billing API with granian', default_long=True)
@dataclass
class Run:
    host: Annotated[
        str,
        cappa.Arg(default='127.0.0.1', help='Bind address, use 0.0.0.0 to accept gateway webhooks from outside'),
    ]
    port: Annotated[int, cappa.Arg(default=8000, help='Bind port')]
    no_reload: Annotated[bool, cappa.Arg(default=False, help='Disable reloading on source changes')]
    workers: Annotated[int, cappa.Arg(default=1, help='Worker processes, only honored with --no-reload')]

    def __call__(self) -> None:
        run(host=self.host, port=self.port, no_reload=self.no_reload, workers=self.workers)


@cappa.command(name='replenish-credits', help='Replenish plan credits for subscriptions past their period end')
@dataclass
class ReplenishCredits:
    async def __call__(self) -> None:
        await run_job('Plan credit replenishment', replenish_plan_credits_job)


@cappa.command(name='send-reminders', help='Send reminders for pending invoices')
@dataclass
class SendReminders:
    async def __call__(self) -> None:
        await run_job('Invoice reminders', send_invoice_reminders_job)


@cappa.command(name='replay-webhooks', help='Replay webhook events that failed processing')
@dataclass
class ReplayWebhooks:
    async def __call__(self) -> None:
        await run_job('Webhook replay', replay_webhooks_job)


@cappa.command(help='Run billing jobs once')
@dataclass
class Billing:
    subcmd: cappa.Subcommands[ReplenishCredits | SendReminders | ReplayWebhooks]


@cappa.command(help='AiYou back-office billing command line interface', default_long=True)
@dataclass
class BackofficeCli:
    subcmd: cappa.Subcommands[Init | Run | Billing]


def main() -> None:
    output = cappa.Output(error_format=f'{error_format}\n{output_help}')
    asyncio.run(cappa.invoke_async(BackofficeCli, version=__version__, output=output))
