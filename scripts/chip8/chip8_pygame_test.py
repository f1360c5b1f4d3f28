import os
os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
import tempfile
import unittest

import pygame

from chip8 import Chip8, MachineState, RomReadError, UnknownOpcode
from chip8_pygame import (
    Beeper, Screen, get_args, handle_events, quirks_from_args,
    read_rom_file, run_frame, BLUE, LIGHT_BLUE, INSTRUCTIONS_PER_SECOND, SCALE,
)


def rom(*opcodes):
    return b"".join(op.to_bytes(2, "big") for op in opcodes)


class TestArguments(unittest.TestCase):
    def test_defaults(self):
        args = get_args(["-f", "pong.ch8"])
        self.assertEqual(args.file, "pong.ch8")
        self.assertEqual(args.ips, INSTRUCTIONS_PER_SECOND)
        self.assertEqual(args.scale, SCALE)
        quirks = quirks_from_args(args)
        self.assertTrue(quirks.shift_uses_vy)
        self.assertFalse(quirks.jump_uses_vx)
        self.assertTrue(quirks.memory_increments_idx)
        self.assertTrue(quirks.logic_resets_vf)

    def test_quirk_flags(self):
        args = get_args(["--file", "rom", "--shift-vx", "--jump-vx", "--no-index-increment", "--no-vf-reset"])
        quirks = quirks_from_args(args)
        self.assertFalse(quirks.shift_uses_vy)
        self.assertTrue(quirks.jump_uses_vx)
        self.assertFalse(quirks.memory_increments_idx)
        self.assertFalse(quirks.logic_resets_vf)

    def test_invalid_arguments(self):
        for argv in ([], ["-f", "rom", "--ips", "10"], ["-f", "rom", "--scale", "0"]):
            with self.subTest(argv=argv):
                with self.assertRaises(SystemExit):
                    get_args(argv)


class TestRomFile(unittest.TestCase):
    def test_read(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "test.ch8")
            with open(path, "wb") as f:
                f.write(b"\x00\xE0\x12\x00")
            self.assertEqual(read_rom_file(path), b"\x00\xE0\x12\x00")

    def test_missing_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(RomReadError):
                read_rom_file(os.path.join(tmp, "missing.ch8"))


class TestEvents(unittest.TestCase):
    def test_keys_are_forwarded(self):
        chip = Chip8()
        self.assertTrue(handle_events(chip, [pygame.event.Event(pygame.KEYDOWN, key=pygame.K_a)]))
        self.assertTrue(chip.keypad[0xA])
        self.assertTrue(handle_events(chip, [pygame.event.Event(pygame.KEYUP, key=pygame.K_a)]))
        self.assertFalse(chip.keypad[0xA])

    def test_unmapped_keys_are_ignored(self):
        chip = Chip8()
        self.assertTrue(handle_events(chip, [pygame.event.Event(pygame.KEYDOWN, key=pygame.K_z)]))
        self.assertEqual(chip.keypad.keys, [False] * 16)

    def test_quit(self):
        chip = Chip8()
        self.assertFalse(handle_events(chip, [pygame.event.Event(pygame.QUIT)]))
        self.assertFalse(handle_events(chip, [pygame.event.Event(pygame.KEYDOWN, key=pygame.K_ESCAPE)]))


class TestFrame(unittest.TestCase):
    def test_runs_instructions_then_ticks_timers(self):
        chip = Chip8()
        chip.load_rom(rom(0x6103, 0xF115, 0xF118, 0x7001, 0x1206))
        self.assertTrue(run_frame(chip, 10))
        # 3 setup instructions, then 7 more alternating between the add and the jump back to it
        self.assertEqual(chip.v_regs[0], 4)
        self.assertEqual((chip.dt, chip.st), (2, 2))

    def test_draw_ends_the_frame(self):
        chip = Chip8()
        chip.load_rom(rom(0x7001, 0xD005, 0x7001))
        self.assertFalse(run_frame(chip, 10))
        self.assertEqual(chip.pc, 0x204)
        self.assertEqual(chip.v_regs[0], 1)
        self.assertTrue(chip.consume_redraw())

    def test_key_wait_ends_the_frame(self):
        chip = Chip8()
        chip.load_rom(rom(0xF00A))
        run_frame(chip, 10)
        self.assertIs(chip.state, MachineState.AWAITING_KEY)
        self.assertEqual(chip.pc, 0x200)
        chip.key_down(6)
        chip.latch_keys()
        chip.key_up(6)
        run_frame(chip, 10)
        self.assertIs(chip.state, MachineState.RUNNING)
        self.assertEqual(chip.v_regs[0], 6)

    def test_errors_reach_the_loop(self):
        chip = Chip8()
        with self.assertRaises(UnknownOpcode):
            run_frame(chip, 10)


class TestScreen(unittest.TestCase):
    def setUp(self):
        pygame.display.init()

    def tearDown(self):
        pygame.display.quit()

    def test_render(self):
        chip = Chip8()
        chip.screen.write_pixel(1, 0, 1)
        screen = Screen(s=2)
        screen.render(chip.screen.snapshot())
        self.assertEqual(screen.surface.get_at_mapped((2, 0)), screen.surface.map_rgb(LIGHT_BLUE))
        self.assertEqual(screen.surface.get_at_mapped((3, 1)), screen.surface.map_rgb(LIGHT_BLUE))
        self.assertEqual(screen.surface.get_at_mapped((0, 0)), screen.surface.map_rgb(BLUE))
        self.assertEqual(screen.surface.get_size(), (128, 64))


class TestBeeper(unittest.TestCase):
    def tearDown(self):
        if pygame.mixer.get_init():
            pygame.mixer.quit()

    def test_follows_sound_flag(self):
        beeper = Beeper()
        beeper.update(True)
        self.assertEqual(beeper.playing, beeper.sound is not None)
        beeper.update(False)
        self.assertFalse(beeper.playing)


if __name__ == "__main__":
    unittest.main()
