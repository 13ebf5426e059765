import sys
from colorama import init as colorama_init, Fore, Style
from datetime import datetime
colorama_init(autoreset=True)


class Log:
    def __init__(self, verbose: int = 1, stream=None):
        self.verbose = verbose
        self.stream = stream
        self.PAY = Fore.MAGENTA
        self._progress_open = False

    def _time(self):
        return datetime.now().strftime("[%H:%M:%S]")

    def _fmt(self, level: str, color: str):
        return f"{self._time()} {color}[{level}]{Style.RESET_ALL}"

    def _print(self, line: str):
        out = self.stream or sys.stdout
        if self._progress_open:
            out.write("\n")
            self._progress_open = False
        print(line, file=out)

    def info(self, msg: str):
        if self.verbose >= 1:
            self._print(f"{self._fmt('INFO', Fore.CYAN)} {msg}")

    def warn(self, msg: str):
        if self.verbose >= 0:
            self._print(f"{self._fmt('WARNING', Fore.YELLOW)} {msg}")

    def ok(self, msg: str):
        self._print(f"{self._fmt('SUCCESS', Fore.GREEN)} {msg}")

    def fail(self, msg: str):
        self._print(f"{self._fmt('FAIL', Fore.RED)} {msg}")

    def debug(self, msg: str):
        if self.verbose >= 2:
            self._print(f"{self._fmt('DEBUG', Fore.MAGENTA)} {msg}")

    def finding(self, finding):
        conf = ", ".join(c for c in finding.confirmations if c)
        self._print(f"{self._fmt('CRITICAL', Fore.RED)} SQLi ({finding.technique.value}) "
                    f"{finding.point.kind.value}.{finding.point.name} = "
                    f"{self.PAY}{finding.payload}{Style.RESET_ALL} "
                    f"{Style.DIM}(HTTP {finding.response_meta.status}"
                    f"{'; ' + conf if conf else ''}){Style.RESET_ALL}")

    def progress(self, event):
        """Single self-rewriting status line for scan and smart-scan progress events."""
        if self.verbose < 1:
            return
        out = self.stream or sys.stdout
        if event.kind == "smart" and event.phase == "crawl":
            text = f"crawl {event.crawled_pages}/{event.max_pages} pages"
        elif event.kind == "smart":
            text = f"candidates {event.scan_processed or 0}/{event.scan_total or 0}"
        else:
            text = f"checks {event.processed_checks or 0}/{event.planned_checks or 0}"
        if event.eta_ms:
            text += f"  eta {event.eta_ms / 1000:.0f}s"
        out.write(f"\r{self._time()} {Fore.BLUE}[{event.phase.upper()}]{Style.RESET_ALL} {text}\033[K")
        out.flush()
        self._progress_open = event.phase != "done"
        if not self._progress_open:
            out.write("\n")
