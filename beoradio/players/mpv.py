"""
mpv playback sink.

Runs one mpv process per stream.  Stream bytes are pumped into mpv's stdin,
so a paused mpv stops reading and the pump (and the HTTP connection behind
it) backs off on its own.  Pause/resume and lifecycle events go over mpv's
JSON IPC socket:

    playback-restart (first)   → start
    end-file reason=eof        → finish
    end-file reason=error      → error
    mpv exits without end-file → error
"""

import asyncio
import json
import logging
import os

from ..lib.config import cfg
from ..sources.base import CHUNK_SIZE
from .base import ERROR, FINISH, START, PlaybackSink

log = logging.getLogger(__name__)

IPC_CONNECT_ATTEMPTS = 50  # x 0.1 s
STOP_TIMEOUT = 2  # seconds before SIGKILL


class MpvSink(PlaybackSink):
    id = "mpv"
    name = "mpv"

    def __init__(self, audio_output: str | None = None, ipc_socket: str | None = None):
        super().__init__()
        self.audio_output = audio_output or cfg("player", "audio_output", default="pulse")
        self._ipc_socket = ipc_socket or f"/tmp/beo-radio-mpv-{os.getpid()}.sock"
        self.process: asyncio.subprocess.Process | None = None
        self._pump_task: asyncio.Task | None = None
        self._ipc_task: asyncio.Task | None = None
        self._ipc_reader: asyncio.StreamReader | None = None
        self._ipc_writer: asyncio.StreamWriter | None = None
        self._started = False
        self._ended = False

    # ── mpv lifecycle ──

    def _command(self) -> list[str]:
        return [
            'mpv', f'--ao={self.audio_output}',
            '--no-video', '--no-terminal',
            '--idle=no',
            '--cache=yes',
            f'--input-ipc-server={self._ipc_socket}',
            '-',
        ]

    async def _launch_mpv(self):
        try:
            os.unlink(self._ipc_socket)
        except FileNotFoundError:
            pass

        env = os.environ.copy()
        env.setdefault('XDG_RUNTIME_DIR', f'/run/user/{os.getuid()}')
        self.process = await asyncio.create_subprocess_exec(
            *self._command(),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
            env=env,
        )

        # Wait for IPC socket and connect
        for _ in range(IPC_CONNECT_ATTEMPTS):
            await asyncio.sleep(0.1)
            if self.process.returncode is not None:
                raise RuntimeError("mpv exited immediately")
            if os.path.exists(self._ipc_socket):
                try:
                    self._ipc_reader, self._ipc_writer = \
                        await asyncio.open_unix_connection(self._ipc_socket)
                    return
                except (ConnectionRefusedError, FileNotFoundError):
                    continue
        raise RuntimeError("Could not connect to mpv IPC")

    async def play(self, stream, generation: int):
        await self.destroy()
        self.generation = generation
        self.paused = False
        self._started = False
        self._ended = False
        try:
            await self._launch_mpv()
        except (OSError, RuntimeError) as e:
            log.error("mpv launch failed: %s", e)
            await self._stop_process()
            self._end(generation, ERROR, e)
            return
        self._ipc_task = asyncio.create_task(self._read_ipc_events(generation))
        self._pump_task = asyncio.create_task(self._pump(stream, generation))
        log.info("mpv launched (generation %d)", generation)

    # ── Stream pump ──

    async def _pump(self, stream, generation: int):
        """Copy stream bytes into mpv's stdin until end of stream."""
        stdin = self.process.stdin
        try:
            while True:
                chunk = await stream.read(CHUNK_SIZE)
                if not chunk:
                    break
                stdin.write(chunk)
                await stdin.drain()
            stdin.close()
            log.debug("Stream fully handed to mpv (generation %d)", generation)
        except asyncio.CancelledError:
            raise
        except (BrokenPipeError, ConnectionResetError):
            # mpv went away; the IPC reader reports why
            log.debug("mpv stdin closed (generation %d)", generation)
        except Exception as e:
            log.warning("Stream read failed: %s", e)
            self._end(generation, ERROR, e)

    # ── IPC communication ──

    async def _send_ipc(self, cmd_obj) -> bool:
        if not self._ipc_writer:
            return False
        try:
            self._ipc_writer.write(json.dumps(cmd_obj).encode() + b'\n')
            await self._ipc_writer.drain()
            return True
        except (ConnectionError, OSError) as e:
            log.error("mpv IPC send error: %s", e)
            return False

    async def _close_ipc(self):
        if self._ipc_writer:
            try:
                self._ipc_writer.close()
                await self._ipc_writer.wait_closed()
            except (ConnectionError, OSError):
                pass
        self._ipc_reader = None
        self._ipc_writer = None

    async def _read_ipc_events(self, generation: int):
        """Background task — turns mpv IPC events into lifecycle events."""
        try:
            while self._ipc_reader:
                line = await self._ipc_reader.readline()
                if not line:
                    break  # EOF — mpv closed
                try:
                    msg = json.loads(line)
                except json.JSONDecodeError:
                    continue
                event = msg.get('event')
                if event == 'playback-restart' and not self._started:
                    self._started = True
                    self.emit(START, generation)
                elif event == 'end-file':
                    reason = msg.get('reason')
                    if reason == 'eof':
                        self._end(generation, FINISH)
                    elif reason == 'error':
                        error = msg.get('file_error') or 'mpv playback error'
                        self._end(generation, ERROR, RuntimeError(error))
        except asyncio.CancelledError:
            return
        except (ConnectionError, OSError) as e:
            log.debug("IPC reader ended: %s", e)

        # mpv exited on its own (destroy() cancels this task first)
        self._end(generation, ERROR, RuntimeError("mpv exited unexpectedly"))

    def _end(self, generation: int, kind: str, error: BaseException | None = None):
        """Emit the one terminal event for *generation*."""
        if self._ended or generation != self.generation:
            return
        self._ended = True
        self.emit(kind, generation, error)

    # ── Public controls ──

    async def pause(self) -> bool:
        if self.paused or self.generation is None:
            return False
        if not await self._send_ipc({'command': ['set_property', 'pause', True]}):
            return False
        self.paused = True
        return True

    async def resume(self) -> bool:
        if not self.paused or self.generation is None:
            return False
        if not await self._send_ipc({'command': ['set_property', 'pause', False]}):
            return False
        self.paused = False
        return True

    async def _stop_process(self):
        if self.process:
            if self.process.returncode is None:
                try:
                    self.process.terminate()
                except ProcessLookupError:
                    pass
                try:
                    await asyncio.wait_for(self.process.wait(), STOP_TIMEOUT)
                except asyncio.TimeoutError:
                    self.process.kill()
                    await self.process.wait()
            self.process = None

    async def destroy(self):
        for task in (self._pump_task, self._ipc_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._pump_task = None
        self._ipc_task = None
        await self._close_ipc()
        await self._stop_process()
        self.generation = None
        self.paused = False
