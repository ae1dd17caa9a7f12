from rich.text import Text

from backoffice.core.registrar import register_app
from backoffice.utils.console import console
from backoffice.utils.timezone import timezone

_log_prefix = f'{timezone.to_str(timezone.now(), "%Y-%m-%d %H:%M:%S")} | {"INFO": <8} | - | '
console.print(Text(f'{_log_prefix}Starting service...', style='bold magenta'))

app = register_app()
