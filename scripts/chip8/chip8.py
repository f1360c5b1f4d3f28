# CHIP-8 INFO
# https://chip-8.github.io/extensions/#chip-8
# https://chip-8.github.io/links/
#
# COMPATIBILITY QUIRKS TABLE
# https://games.gulrak.net/cadmium/chip8-opcode-table.html#quirk6
#
# MASTERING CHIP-8
# https://github.com/mattmikolay/chip-8/wiki/Mastering-CHIP%E2%80%908
#
# TEST SUITE
# https://github.com/Timendus/chip8-test-suite


import enum
import logging
import random
from functools import wraps

logger = logging.getLogger(__name__)


# ******************** STATIC SECTION
C8_FONTS = [0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
            0x20, 0x60, 0x20, 0x20, 0x70,  # 1
            0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
            0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
            0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
            0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
            0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
            0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
            0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
            0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
            0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
            0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
            0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
            0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
            0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
            0xF0, 0x80, 0xF0, 0x80, 0x80]  # F

FONT_START_ADDRESS = 0x000
FONT_GLYPH_SIZE = 5
MEMORY_SIZE = 4096
ROM_START_ADDRESS = 0x200
MAX_ROM_SIZE = MEMORY_SIZE - ROM_START_ADDRESS
STACK_SIZE = 16
REGISTER_COUNT = 16
KEY_COUNT = 16
SCREEN_HEIGHT = 32
SCREEN_WIDTH = 64


# ******************** ERRORS SECTION
class Chip8Error(Exception):
    """base class for every error raised by the interpreter core"""


class RomError(Chip8Error):
    """the ROM could not be ingested; the caller may retry with another one"""


class RomTooLarge(RomError):
    def __init__(self, size, limit=MAX_ROM_SIZE):
        super().__init__(f"ROM is {size} bytes long, at most {limit} bytes fit in memory")
        self.size = size
        self.limit = limit


class RomReadError(RomError):
    pass


class StackOverflow(Chip8Error):
    def __init__(self, capacity):
        super().__init__(f"The CHIP-8 stack can contain at most {capacity} addresses. Limit exceeded")
        self.capacity = capacity


class StackUnderflow(Chip8Error):
    def __init__(self):
        super().__init__("Tried to return from a subroutine with an empty stack")


class UnknownOpcode(Chip8Error):
    def __init__(self, opcode, pc):
        super().__init__(f"Unknown opcode 0x{opcode:04x} at address 0x{pc:04x}")
        self.opcode = opcode
        self.pc = pc


class MemoryOutOfBounds(Chip8Error):
    def __init__(self, address):
        super().__init__(f"Memory access at 0x{address:04x} is outside the 4KB address space")
        self.address = address


class MachineHalted(Chip8Error):
    def __init__(self):
        super().__init__("The machine is halted, reset it before stepping again")


# ******************** UTILITIES SECTION
def operands(opcode):
    """split an opcode into the fields used by the instruction set"""
    return {
        'opcode': opcode,
        'x': (opcode & 0x0F00) >> 8,
        'y': (opcode & 0x00F0) >> 4,
        'n': opcode & 0x000F,
        'nn': opcode & 0x00FF,
        'nnn': opcode & 0x0FFF,
    }

def asm(msg):
    """decorator to log the ASM of the instruction being executed"""
    def decorator(fn):
        @wraps(fn)
        def wrapper_fn(self, opcode):
            if logger.isEnabledFor(logging.DEBUG):
                # pc was already moved past the instruction by the fetch
                logger.debug("mem_addr: 0x%04x    instruction: %s", self.pc - 2, msg.format(**operands(opcode)))
            return fn(self, opcode)
        wrapper_fn.mnemonic = msg
        return wrapper_fn
    return decorator


class MachineState(enum.Enum):
    RUNNING = 'RUNNING'
    AWAITING_KEY = 'AWAITING_KEY'
    HALTED = 'HALTED'


class Quirks:
    """
    behaviours where historical interpreters disagree
    the defaults follow the original COSMAC VIP interpreter
    """
    def __init__(self, shift_uses_vy=True, jump_uses_vx=False, memory_increments_idx=True, logic_resets_vf=True):
        self.shift_uses_vy = shift_uses_vy                  # 8XY6/8XYE read Vy instead of shifting Vx in place
        self.jump_uses_vx = jump_uses_vx                    # BXNN jumps to XNN + Vx instead of NNN + V0
        self.memory_increments_idx = memory_increments_idx  # FX55/FX65 leave I past the last register
        self.logic_resets_vf = logic_resets_vf              # 8XY1/8XY2/8XY3 clear VF

    def __repr__(self):
        return (f"Quirks(shift_uses_vy={self.shift_uses_vy}, jump_uses_vx={self.jump_uses_vx}, "
                f"memory_increments_idx={self.memory_increments_idx}, logic_resets_vf={self.logic_resets_vf})")


# ******************** I/O SECTION
class Framebuffer:
    """monochrome pixel grid, one int (0 or 1) per pixel stored row by row"""
    def __init__(self, w=SCREEN_WIDTH, h=SCREEN_HEIGHT):
        self.w, self.h = w, h
        self.buffer = [0] * h * w

    def read_pixel(self, x, y):
        """return 1 if pixel is ON, return 0 if pixel is OFF"""
        return self.buffer[y * self.w + x]

    def write_pixel(self, x, y, color):
        self.buffer[y * self.w + x] = 1 if color else 0

    def clear(self):
        self.buffer = [0] * self.h * self.w

    def snapshot(self):
        """copy of the whole grid as a tuple of rows, safe to hand over to a renderer"""
        return tuple(tuple(self.buffer[row * self.w:(row + 1) * self.w]) for row in range(self.h))

    def lit_pixels(self):
        return [(i % self.w, i // self.w) for i, p in enumerate(self.buffer) if p]


class Keypad:
    """
    live state of the 16 keys plus the snapshot taken at the last latch
    the snapshot is what FX0A compares against to find a press-then-release edge
    """
    def __init__(self):
        self.keys = [False] * KEY_COUNT
        self.previous = [False] * KEY_COUNT

    @staticmethod
    def _check(key):
        if not 0 <= key < KEY_COUNT:
            raise IndexError(f"CHIP-8 keys go from 0x0 to 0xF, got {key}")

    def __getitem__(self, key):
        return self.is_pressed(key)

    def press(self, key):
        self._check(key)
        self.keys[key] = True

    def release(self, key):
        self._check(key)
        self.keys[key] = False

    def is_pressed(self, key):
        self._check(key)
        return self.keys[key]

    def latch(self):
        self.previous = list(self.keys)

    def first_released(self):
        """lowest key that was down at the last latch and is up now, None if there is none"""
        for key in range(KEY_COUNT):
            if self.previous[key] and not self.keys[key]:
                return key
        return None


# ******************** MEMORY SECTION
# ********** WRAPS A LIST TO REPRESENT A STACK WITH A LIMITED SIZE OF 16 ADDRESSES
class Stack:
    def __init__(self, capacity=STACK_SIZE):
        self.addr_list = []
        self.capacity = capacity

    def __len__(self):
        return len(self.addr_list)

    def __repr__(self):
        return "[" + ", ".join(f"0x{addr:04x}" for addr in self.addr_list) + "]"

    def append(self, address):
        if len(self.addr_list) >= self.capacity:
            raise StackOverflow(self.capacity)
        self.addr_list.append(address)

    def pop(self):
        if not self.addr_list:
            raise StackUnderflow()
        return self.addr_list.pop()

# ********** WRAPS A BYTEARRAY TO REPRESENT THE MAIN MEMORY WITH A LIMITED SIZE OF 4KB
class Memory:
    def __init__(self, size=MEMORY_SIZE):
        self.inner = bytearray(size)
        self.inner[FONT_START_ADDRESS:FONT_START_ADDRESS+len(C8_FONTS)] = bytes(C8_FONTS)

    def __len__(self):
        return len(self.inner)

    def _check(self, key):
        """every access is validated, nothing outside the address space is ever touched"""
        size = len(self.inner)
        if isinstance(key, slice):
            start = 0 if key.start is None else key.start
            stop = size if key.stop is None else key.stop
            if start < 0:
                raise MemoryOutOfBounds(start)
            if stop > size:
                raise MemoryOutOfBounds(max(start, size))
        elif not 0 <= key < size:
            raise MemoryOutOfBounds(key)

    def __setitem__(self, key, value):
        self._check(key)
        if isinstance(key, slice):
            self.inner[key] = bytes(v & 0xFF for v in value)
        else:
            self.inner[key] = value & 0xFF

    def __getitem__(self, index):
        self._check(index)
        if isinstance(index, slice):
            return list(self.inner[index])
        return self.inner[index]

    def load_rom(self, rom):
        """copy the ROM bytes verbatim at the program start address"""
        if len(rom) > len(self.inner) - ROM_START_ADDRESS:
            raise RomTooLarge(len(rom), len(self.inner) - ROM_START_ADDRESS)
        self.inner[ROM_START_ADDRESS:ROM_START_ADDRESS+len(rom)] = rom


# ******************** CPU SECTION
class Chip8:
    def __init__(self, quirks=None, rng=None, stack_size=STACK_SIZE):
        self.quirks = quirks or Quirks()
        self.rng = rng or random.Random()
        self.stack_size = stack_size
        self.instructions = {
            0x00E0: self._clear_screen,
            0x00EE: self._return,
            0x1000: self._jump,
            0x2000: self._call_addr,
            0x3000: self._skip_if_eq,
            0x4000: self._skip_if_not_eq,
            0x5000: self._skip_if_eq_regs,
            0x6000: self._set_vk,
            0x7000: self._add_to_vk,
            0x8000: self._set_vx_to_vy,
            0x8001: self._set_vx_or_vy,
            0x8002: self._set_vx_and_vy,
            0x8003: self._set_vx_xor_vy,
            0x8004: self._add_vx_vy,
            0x8005: self._sub_vx_vy,
            0x8006: self._shr,
            0x8007: self._subn_vx_vy,
            0x800E: self._shl,
            0x9000: self._skip_if_not_eq_regs,
            0xA000: self._set_idx,
            0xB000: self._jump_plus,
            0xC000: self._random_byte_and,
            0xD000: self._to_screen,
            0xE09E: self._skip_if_pressed,
            0xE0A1: self._skip_if_not_pressed,
            0xF007: self._set_vx_dt,
            0xF00A: self._wait_keypress,
            0xF015: self._set_dt_vx,
            0xF018: self._set_st,
            0xF01E: self._add_to_idx,
            0xF029: self._select_char,
            0xF033: self._bcd_repr,
            0xF055: self._store_vregs,
            0xF065: self._load_vregs,
        }
        self.reset()

    def reset(self):
        """bring the whole machine back to its power-on state, fonts included"""
        self.mem = Memory()
        self.stack = Stack(self.stack_size)
        self.screen = Framebuffer()
        self.keypad = Keypad()
        self.v_regs = [0] * REGISTER_COUNT
        self.pc = ROM_START_ADDRESS
        self.opcode = 0x0000     # last fetched instruction, kept for crash dumps
        self.idx = 0    # specify where the sprites reside in memory
        self.dt = 0     # delay timer, active when non-zero
        self.st = 0     # sound timer, active when non-zero
        self.draw = False
        self.pause = False
        self.state = MachineState.RUNNING

    def __str__(self):
        registers = " ".join(f"V{i:X}:0x{v:02x}" for i, v in enumerate(self.v_regs))
        registers = f"PC_REGISTER:0x{self.pc:04x} | IDX_REGISTER:0x{self.idx:04x} | VARIABLE_REGISTERS:{registers}"
        timers = f"DT:{self.dt} | ST:{self.st}"
        stack = f"STACK:{self.stack}"
        flags = f"DRAW:{self.draw} | PAUSE:{self.pause} | STATE:{self.state.value}"
        instruction = f"LAST_OPCODE:0x{self.opcode:04x} ({self.disassemble(self.opcode)})"
        return f"{registers}\n{instruction}\n{timers}\n{stack}\n{flags}"

    @property
    def sound_active(self):
        return self.st > 0

    # ********** HOST FACING API
    def load_rom(self, rom, length=None):
        """
        load a ROM from a bytes-like object or a binary file object
        when length is given the source must provide at least that many bytes
        """
        if length is not None and length > MAX_ROM_SIZE:
            raise RomTooLarge(length)
        if hasattr(rom, 'read'):
            try:
                # one byte past the limit is enough to tell an oversized ROM apart
                rom = rom.read(MAX_ROM_SIZE + 1 if length is None else length)
            except (OSError, ValueError) as e:
                raise RomReadError(f"Unable to read the ROM: {e}") from e
        try:
            rom = bytes(rom)
        except TypeError as e:
            raise RomReadError(f"The ROM source does not provide bytes: {e}") from e
        if length is not None:
            if len(rom) < length:
                raise RomReadError(f"ROM is truncated, expected {length} bytes but only {len(rom)} are available")
            rom = rom[:length]
        self.mem.load_rom(rom)
        logger.info("The ROM has been loaded successfully (%d bytes)", len(rom))

    def key_down(self, key):
        self.keypad.press(key)

    def key_up(self, key):
        self.keypad.release(key)

    def latch_keys(self):
        """to be called once per frame by the loop so FX0A sees a whole frame of key history"""
        self.keypad.latch()

    def consume_redraw(self):
        draw, self.draw = self.draw, False
        return draw

    def tick_timers(self):
        """decrement delay/sound timers (dt/st), return True while a tone should be playing"""
        if self.dt > 0:
            self.dt -= 1
        if self.st > 0:
            self.st -= 1
        return self.st > 0

    def disassemble(self, opcode):
        instruction = self._lookup(opcode)
        if instruction is None:
            return f"DW 0x{opcode:04x}"
        return instruction.mnemonic.format(**operands(opcode))

    # ********** INSTRUCTIONS
    @asm("SKP V{x:X}")
    def _skip_if_pressed(self, opcode):
        """skip the following instruction if the key corresponding to the hex value stored in Vx is pressed"""
        x = (opcode & 0x0F00) >> 8
        key = self.v_regs[x] & 0xF     # only the low nibble addresses the 16 keys
        if self.keypad[key]:
            self._goto_next_instruction()

    @asm("SKNP V{x:X}")
    def _skip_if_not_pressed(self, opcode):
        """skip the following instruction if the key corresponding to the hex value stored in Vx is NOT pressed"""
        x = (opcode & 0x0F00) >> 8
        key = self.v_regs[x] & 0xF     # only the low nibble addresses the 16 keys
        if not self.keypad[key]:
            self._goto_next_instruction()

    @asm("LD V{x:X}, K")
    def _wait_keypress(self, opcode):
        """wait for a key to be pressed and then released, and store its value in Vx"""
        x = (opcode & 0x0F00) >> 8
        key = self.keypad.first_released()
        if key is None:
            self.pc -= 0x2      # stay on the same instruction until a key is released
            self.state = MachineState.AWAITING_KEY
        else:
            self.v_regs[x] = key
            self.pause = True
            self.state = MachineState.RUNNING

    @asm("LD V{x:X}, DT")
    def _set_vx_dt(self, opcode):
        """set Vx = DT (delay timer) value"""
        x = (opcode & 0x0F00) >> 8
        self.v_regs[x] = self.dt

    @asm("LD DT, V{x:X}")
    def _set_dt_vx(self, opcode):
        """set DT (delay timer) = Vx"""
        x = (opcode & 0x0F00) >> 8
        self.dt = self.v_regs[x]

    @asm("CLS")
    def _clear_screen(self, opcode):
        self.screen.clear()
        self.draw = True
        self.pause = True

    @asm("RET")
    def _return(self, opcode):
        """return from a subroutine"""
        self.pc = self.stack.pop()

    @asm("JP 0x{nnn:03x}")
    def _jump(self, opcode):
        address = opcode & 0x0FFF
        self.pc = address

    @asm("CALL 0x{nnn:03x}")
    def _call_addr(self, opcode):
        address = opcode & 0x0FFF
        self.stack.append(self.pc)
        self.pc = address

    @asm("SE V{x:X}, 0x{nn:02x}")
    def _skip_if_eq(self, opcode):
        x = (opcode & 0x0F00) >> 8
        comparison_value = opcode & 0x00FF
        if self.v_regs[x] == comparison_value:
            self._goto_next_instruction()

    @asm("SNE V{x:X}, 0x{nn:02x}")
    def _skip_if_not_eq(self, opcode):
        x = (opcode & 0x0F00) >> 8
        comparison_value = opcode & 0x00FF
        if self.v_regs[x] != comparison_value:
            self._goto_next_instruction()

    @asm("SE V{x:X}, V{y:X}")
    def _skip_if_eq_regs(self, opcode):
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        if self.v_regs[x] == self.v_regs[y]:
            self._goto_next_instruction()

    @asm("SNE V{x:X}, V{y:X}")
    def _skip_if_not_eq_regs(self, opcode):
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        if self.v_regs[x] != self.v_regs[y]:
            self._goto_next_instruction()

    @asm("LD V{x:X}, 0x{nn:02x}")
    def _set_vk(self, opcode):
        """set the value of one of the 16 variable registers, Vx"""
        x, value = (opcode & 0x0F00) >> 8, opcode & 0x00FF
        self.v_regs[x] = value

    @asm("LD V{x:X}, V{y:X}")
    def _set_vx_to_vy(self, opcode):
        """set the value of Vx equal to that of Vy"""
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        self.v_regs[x] = self.v_regs[y]

    @asm("OR V{x:X}, V{y:X}")
    def _set_vx_or_vy(self, opcode):
        """set the value of Vx to Vx OR Vy"""
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        self.v_regs[x] |= self.v_regs[y]
        if self.quirks.logic_resets_vf:
            self.v_regs[0xF] = 0            # compatibility quirk 1

    @asm("AND V{x:X}, V{y:X}")
    def _set_vx_and_vy(self, opcode):
        """set the value of Vx to Vx AND Vy"""
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        self.v_regs[x] &= self.v_regs[y]
        if self.quirks.logic_resets_vf:
            self.v_regs[0xF] = 0            # compatibility quirk 1

    @asm("XOR V{x:X}, V{y:X}")
    def _set_vx_xor_vy(self, opcode):
        """set the value of Vx to Vx XOR Vy"""
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        self.v_regs[x] ^= self.v_regs[y]
        if self.quirks.logic_resets_vf:
            self.v_regs[0xF] = 0            # compatibility quirk 1

    @asm("ADD V{x:X}, V{y:X}")
    def _add_vx_vy(self, opcode):
        """set the value of Vx to Vx + Vy, VF = carry"""
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        sum = self.v_regs[x] + self.v_regs[y]
        self.v_regs[x] = sum & 0xFF     # keep only the lowest 8 bits from the result and store them in Vx
        self.v_regs[0xF] = 1 if sum > 255 else 0

    @asm("SUB V{x:X}, V{y:X}")
    def _sub_vx_vy(self, opcode):
        """set the value of Vx to Vx - Vy, VF = NOT borrow"""
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        not_borrow = 1 if self.v_regs[x] >= self.v_regs[y] else 0
        self.v_regs[x] = (self.v_regs[x] - self.v_regs[y]) & 0xFF
        self.v_regs[0xF] = not_borrow

    @asm("SHR V{x:X}, V{y:X}")
    def _shr(self, opcode):
        """set Vx equal to Vy SHR 1 (Vx SHR 1 without the shift quirk)"""
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        source = self.v_regs[y] if self.quirks.shift_uses_vy else self.v_regs[x]     # compatibility quirk 2
        LSB = source & 0x1
        self.v_regs[x] = source >> 1
        self.v_regs[0xF] = LSB

    @asm("SUBN V{x:X}, V{y:X}")
    def _subn_vx_vy(self, opcode):
        """set the value of Vx to Vy - Vx, VF = NOT borrow"""
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        not_borrow = 1 if self.v_regs[y] >= self.v_regs[x] else 0
        self.v_regs[x] = (self.v_regs[y] - self.v_regs[x]) & 0xFF
        self.v_regs[0xF] = not_borrow

    @asm("SHL V{x:X}, V{y:X}")
    def _shl(self, opcode):
        """set Vx equal to Vy SHL 1 (Vx SHL 1 without the shift quirk)"""
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        if self.quirks.shift_uses_vy:
            self.v_regs[x] = self.v_regs[y]     # compatibility quirk 2
        MSB = (self.v_regs[x] & 0x80) >> 7
        self.v_regs[x] = (self.v_regs[x] << 1) & 0xFF   # multiply by 2 and keep only the lowest 8 bits from the result
        self.v_regs[0xF] = MSB

    @asm("ADD V{x:X}, 0x{nn:02x}")
    def _add_to_vk(self, opcode):
        """add to the value already present in one of the variable registers, VF untouched"""
        x, value = (opcode & 0x0F00) >> 8, opcode & 0x0FF
        self.v_regs[x] = (self.v_regs[x] + value) & 0xFF    # keep only the lowest 8 bits from the result and store them in Vx

    @asm("LD I, 0x{nnn:03x}")
    def _set_idx(self, opcode):
        """set the value of the I register"""
        value = opcode & 0x0FFF
        self.idx = value

    @asm("JP V0, 0x{nnn:03x}")
    def _jump_plus(self, opcode):
        address = opcode & 0x0FFF
        register = (opcode & 0x0F00) >> 8 if self.quirks.jump_uses_vx else 0x0     # compatibility quirk 5
        self.pc = address + self.v_regs[register]

    @asm("RND V{x:X}, 0x{nn:02x}")
    def _random_byte_and(self, opcode):
        x, kk = (opcode & 0x0F00) >> 8, opcode & 0x00FF
        rnd = self.rng.randint(0, 255)
        self.v_regs[x] = rnd & kk

    @asm("LD ST, V{x:X}")
    def _set_st(self, opcode):
        """set ST = Vx"""
        register = (opcode & 0x0F00) >> 8
        self.st = self.v_regs[register]

    @asm("ADD I, V{x:X}")
    def _add_to_idx(self, opcode):
        """set I = I + Vx, VF untouched"""
        register = (opcode & 0x0F00) >> 8
        self.idx = (self.idx + self.v_regs[register]) & 0xFFFF

    @asm("LD F, V{x:X}")
    def _select_char(self, opcode):
        """set I to location of sprite for digit Vx"""
        register = (opcode & 0x0F00) >> 8
        self.idx = FONT_START_ADDRESS + self.v_regs[register] * FONT_GLYPH_SIZE

    @asm("LD [I], V{x:X}")
    def _store_vregs(self, opcode):
        """store registers V0 through Vx (included) in memory starting at location I"""
        x = (opcode & 0x0F00) >> 8
        self.mem[self.idx:self.idx+x+1] = self.v_regs[:x+1]
        if self.quirks.memory_increments_idx:
            self.idx += x + 1       # compatibility quirk 6

    @asm("LD V{x:X}, [I]")
    def _load_vregs(self, opcode):
        """read registers V0 through Vx (included) from memory starting at location I"""
        x = (opcode & 0x0F00) >> 8
        self.v_regs[:x+1] = self.mem[self.idx:self.idx+x+1]
        if self.quirks.memory_increments_idx:
            self.idx += x + 1       # compatibility quirk 6

    @asm("LD B, V{x:X}")
    def _bcd_repr(self, opcode):
        """takes the decimal value of Vx and the hundreds digit in memory at I, the tens digit at I+1, the ones digit at I+2"""
        x = (opcode & 0x0F00) >> 8
        ones = self.v_regs[x] % 10
        tens = (self.v_regs[x] // 10) % 10
        hundreds = self.v_regs[x] // 100
        self.mem[self.idx:self.idx+3] = [hundreds, tens, ones]

    @asm("DRW V{x:X}, V{y:X}, {n}")
    def _to_screen(self, opcode):
        """display n-byte sprite starting at memory location I at (Vx, Vy), set VF = collision"""
        x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
        x, y = self.v_regs[x] % self.screen.w, self.v_regs[y] % self.screen.h
        n_bytes = opcode & 0x000F
        self.v_regs[0xF] = 0
        # step through each sprite byte
        for i in range(n_bytes):
            # a row landing exactly one past the bottom edge is dropped, rows further down wrap around
            if y + i == self.screen.h:
                continue
            sprite_byte = self.mem[self.idx + i]
            y_coordinate = (y + i) % self.screen.h
            for j in range(8):      # step through each byte's bits, most significant first
                # same rule for the column exactly one past the right edge
                if x + j == self.screen.w:
                    continue
                if not sprite_byte & (0x80 >> j):
                    continue
                x_coordinate = (x + j) % self.screen.w
                pixel_state = self.screen.read_pixel(x_coordinate, y_coordinate)
                # collision detection
                # sprites are XORed onto the existing screen and if this
                # causes any pixel to be erased then VF=1, otherwise VF=0
                if pixel_state == 1:
                    self.v_regs[0xF] = 1
                self.screen.write_pixel(x_coordinate, y_coordinate, pixel_state ^ 1)
        self.draw = True
        self.pause = True

    def _goto_next_instruction(self):
        self.pc += 0x2

    # ********** FETCH / DECODE / EXECUTE
    def _lookup(self, opcode):
        """find the instruction for an opcode using masks, None when it doesn't exist"""
        # WATCH OUT: every opcode family lives under exactly one mask
        # so an opcode matching none of them is not part of the instruction set
        masks = {
            0xFFFF: [0x00E0,0x00EE],
            0xF0FF: [0xE09E,0xE0A1,0xF007,0xF00A,0xF015,0xF018,0xF01E,0xF029,0xF033,0xF055,0xF065],
            0xF00F: [0x5000,0x8000,0x8001,0x8002,0x8003,0x8004,0x8005,0x8006,0x8007,0x800E,0x9000],
            0xF000: [0x1000,0x2000,0x3000,0x4000,0x6000,0x7000,0xA000,0xB000,0xC000,0xD000],
        }
        for m, ops in masks.items():
            if (opcode & m) in ops:
                return self.instructions[opcode & m]
        return None

    def decode(self, opcode):
        """decode opcodes using masks and return respective function"""
        instruction = self._lookup(opcode)
        if instruction is None:
            raise UnknownOpcode(opcode, self.pc - 2)
        return instruction

    def step(self):
        """emulate one machine cycle (fetch opcode, decode opcode, execute opcode) and return the machine state"""
        if self.state is MachineState.HALTED:
            raise MachineHalted()
        self.pause = False
        self.state = MachineState.RUNNING
        try:
            # fetch (each instruction is two bytes long)
            opcode = self.opcode = self.mem[self.pc] << 8 | self.mem[self.pc + 1]
            self._goto_next_instruction()
            # decode + execute
            instruction = self.decode(opcode)
            instruction(opcode)
        except Chip8Error:
            self.state = MachineState.HALTED
            raise
        return self.state
