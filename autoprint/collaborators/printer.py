import asyncio
import logging

from autoprint.domain.models import PrintOptions, SubmitResult

logger = logging.getLogger(__name__)

class CupsPrinterDriver:
    """Submits files through the CUPS `lp` command."""

    def __init__(self, lp_command: str = "lp"):
        self.lp_command = lp_command

    def build_command(self, location: str, printer_name: str, options: PrintOptions) -> list[str]:
        cmd = [self.lp_command]
        if printer_name:
            cmd += ["-d", printer_name]
        cmd += ["-n", str(options.copies), "-o", f"media={options.paper_size}"]
        cmd += ["-o", "sides=two-sided-long-edge" if options.duplex else "sides=one-sided"]
        if not options.color:
            cmd += ["-o", "print-color-mode=monochrome"]
        cmd.append(location)
        return cmd

    async def submit(self, location: str, printer_name: str, options: PrintOptions) -> SubmitResult:
        cmd = self.build_command(location, printer_name, options)
        logger.info(f"Printing {location} on {printer_name or 'default printer'}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
            stdout, stderr = await proc.communicate()
        except OSError as e:
            logger.error(f"Could not run {self.lp_command}: {e}")
            return SubmitResult(accepted=False, error=str(e))

        if proc.returncode != 0:
            error = stderr.decode(errors="replace").strip() or f"{self.lp_command} exited with {proc.returncode}"
            logger.error(f"Print submission rejected: {error}")
            return SubmitResult(accepted=False, error=error)

        # "request id is <printer>-<n> (1 file(s))"
        reference = stdout.decode(errors="replace").strip() or None
        return SubmitResult(accepted=True, reference=reference)
