# pygame front end for the CHIP-8 interpreter core:
# window, keyboard, buzzer and the loop driving the CPU and its timers


import argparse
import logging
import random
import sys
from array import array

import os
os.environ["PYGAME_HIDE_SUPPORT_PROMPT"] = "no welcome message"   # this env var disable pygame's welcome message when imported
import pygame
from pygame.locals import (
    K_0, K_1, K_2, K_3,
    K_4, K_5, K_6, K_7,
    K_8, K_9, K_a, K_b,
    K_c, K_d, K_e, K_f,
)

from chip8 import (
    Chip8, Chip8Error, MachineState, Quirks, RomError, RomReadError,
    SCREEN_HEIGHT, SCREEN_WIDTH,
)

logger = logging.getLogger(__name__)


# ******************** STATIC SECTION
KEY_MAPPINGS = {
    K_0: 0x0,
    K_1: 0x1,
    K_2: 0x2,
    K_3: 0x3,
    K_4: 0x4,
    K_5: 0x5,
    K_6: 0x6,
    K_7: 0x7,
    K_8: 0x8,
    K_9: 0x9,
    K_a: 0xA,
    K_b: 0xB,
    K_c: 0xC,
    K_d: 0xD,
    K_e: 0xE,
    K_f: 0xF,
}

DEBUG = True if int(os.getenv('DEBUG', 0)) >= 1 else False
FRAMES_PER_SECOND = 60      # also the rate of the delay/sound timers
INSTRUCTIONS_PER_SECOND = 700
SCALE = 15
BLUE = pygame.Color(80,69,155,255)
LIGHT_BLUE = pygame.Color(136,126,203,255)
TONE_HZ = 440
SAMPLE_RATE = 44100
VOLUME = 4096


# ******************** UTILITIES SECTION
def get_args(argv=None):
    parser = argparse.ArgumentParser(description="CHIP-8 interpreter")
    parser.add_argument("-f", "--file", required=True, help="input rom file")
    parser.add_argument("--ips", type=int, default=INSTRUCTIONS_PER_SECOND, help="instructions executed per second")
    parser.add_argument("--scale", type=int, default=SCALE, help="size in window pixels of a CHIP-8 pixel")
    parser.add_argument("--seed", type=int, default=None, help="seed for the RND instruction")
    parser.add_argument("--shift-vx", action="store_true", help="8XY6/8XYE shift Vx in place instead of reading Vy")
    parser.add_argument("--jump-vx", action="store_true", help="BXNN jumps to XNN + Vx instead of NNN + V0")
    parser.add_argument("--no-index-increment", action="store_true", help="FX55/FX65 leave I unchanged")
    parser.add_argument("--no-vf-reset", action="store_true", help="8XY1/8XY2/8XY3 leave VF unchanged")
    args = parser.parse_args(argv)
    if args.ips < FRAMES_PER_SECOND:
        parser.error(f"--ips must be at least {FRAMES_PER_SECOND}")
    if args.scale < 1:
        parser.error("--scale must be a positive integer")
    return args

def quirks_from_args(args):
    return Quirks(
        shift_uses_vy=not args.shift_vx,
        jump_uses_vx=args.jump_vx,
        memory_increments_idx=not args.no_index_increment,
        logic_resets_vf=not args.no_vf_reset,
    )

def read_rom_file(path):
    """read the whole ROM file, raise RomReadError when it can't be read"""
    try:
        with open(path, mode='rb') as f:
            return f.read()
    except OSError as e:
        raise RomReadError(f"Unable to read the ROM at path {path}: {e}") from e


# ******************** I/O SECTION
class Screen:
    def __init__(self, w=SCREEN_WIDTH, h=SCREEN_HEIGHT, s=SCALE, bg_color=BLUE, fg_color=LIGHT_BLUE):
        self.w, self.h, self.scale = w, h, s
        self.background = bg_color
        self.foreground = fg_color
        self.surface = pygame.display.set_mode(
            (w * self.scale, h * self.scale),
        )
        self.surface.fill(self.background)

    def render(self, snapshot):
        """draw a whole framebuffer snapshot, the change is visible right away"""
        self.surface.fill(self.background)
        for y, row in enumerate(snapshot):
            for x, pixel in enumerate(row):
                if pixel:
                    pygame.draw.rect(
                        self.surface,
                        self.foreground,
                        (x * self.scale, y * self.scale, self.scale, self.scale)
                    )
        pygame.display.flip()


class Beeper:
    """square wave tone played for as long as the sound timer is active"""
    def __init__(self, frequency=TONE_HZ, volume=VOLUME):
        self.sound = None
        self.playing = False
        try:
            if not pygame.mixer.get_init():
                pygame.mixer.init(frequency=SAMPLE_RATE, size=-16, channels=1)
            sample_rate, _, channels = pygame.mixer.get_init()
            period = max(2, sample_rate // frequency)
            samples = array('h')
            for i in range(period):
                level = volume if i < period // 2 else -volume
                samples.extend([level] * channels)
            self.sound = pygame.mixer.Sound(buffer=samples.tobytes())
        except (pygame.error, NotImplementedError) as e:
            logger.warning("Audio is not available, running without sound: %s", e)

    def update(self, active):
        if self.sound is None or active == self.playing:
            return
        if active:
            self.sound.play(loops=-1)
        else:
            self.sound.stop()
        self.playing = active


# ******************** LOOP SECTION
def handle_events(chip, events):
    """forward key presses/releases to the CPU, return False when the user asked to quit"""
    run = True
    for event in events:
        if event.type == pygame.QUIT:
            run = False
        elif event.type == pygame.KEYDOWN:
            if event.key == pygame.K_ESCAPE:
                run = False
            elif event.key in KEY_MAPPINGS:
                chip.key_down(KEY_MAPPINGS[event.key])      # register keypress
        elif event.type == pygame.KEYUP:
            if event.key in KEY_MAPPINGS:
                chip.key_up(KEY_MAPPINGS[event.key])        # register key release
    return run

def run_frame(chip, ipf):
    """
    execute up to ipf instructions, then tick the timers once
    the frame ends early when an instruction needs the screen/keys to catch up
    return True when the buzzer should be sounding
    """
    for _ in range(ipf):
        state = chip.step()
        if chip.pause or state is MachineState.AWAITING_KEY:
            break
    return chip.tick_timers()


# ******************** ENTRY POINT SECTION
def main(argv=None):
    args = get_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if DEBUG else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
    )
    chip = Chip8(quirks=quirks_from_args(args), rng=random.Random(args.seed))
    try:
        chip.load_rom(read_rom_file(args.file))
    except RomError as e:
        logger.error("%s", e)
        sys.exit(str(e))
    # pygame initialization
    pygame.init()
    try:
        clock = pygame.time.Clock()
        pygame.display.set_caption(os.path.basename(args.file))
        # IO
        screen = Screen(s=args.scale)
        beeper = Beeper()
        ipf = args.ips // FRAMES_PER_SECOND
        # emulation loop
        run = True
        while run:
            # frames per second
            clock.tick(FRAMES_PER_SECOND)
            run = handle_events(chip, pygame.event.get())
            try:
                beeper.update(run_frame(chip, ipf))
            except Chip8Error as e:
                logger.error("%s", e)
                sys.exit(f"********** THE EMULATOR CRASHED WITH THE FOLLOWING STATE\n{chip}")
            if chip.consume_redraw():
                screen.render(chip.screen.snapshot())
            chip.latch_keys()
    finally:
        pygame.quit()


if __name__ == "__main__":
    main()
