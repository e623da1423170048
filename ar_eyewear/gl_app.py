"""
OpenGL + GLFW host for the eyewear overlay.

This is the ONLY file that uses OpenGL.
Renders:
- Camera frame as a background texture
- The eyewear mesh into an offscreen RGBA target (the overlay layer)
- Debug eye markers on a 2D layer above the overlay

The overlay layer is only redrawn when the tracking loop calls
render_frame(); every display tick composites video + last overlay +
markers, so a missed detection leaves the previous overlay on screen.

Requirements:
- OpenGL 3.2 Core Profile
- GLFW for windowing
- Mesh buffers uploaded once
"""

import asyncio
import ctypes
import logging
import os
from typing import Callable, Optional, Tuple

import cv2
import numpy as np

try:
    import glfw
    from OpenGL.GL import *
    from OpenGL.GL import shaders as gl_shaders
    OPENGL_AVAILABLE = True
except ImportError:
    OPENGL_AVAILABLE = False

from .asset import OverlayAsset
from .capture import CaptureSource
from .config import OverlayConfig, load_config
from .estimation import EstimationStage
from .logging_utils import setup_logging
from .pipeline import PipelineContext, PipelineState, TrackingLoop
from .primitives import (
    fullscreen_quad, hex_to_rgb, model_matrix, perspective_matrix, view_matrix
)
from .types import FrameGeometry, Landmark

logger = logging.getLogger(__name__)

MARKER_COLOR = (255, 0, 0, 255)  # RGBA red

LAYER_VERT_SRC = """
#version 150 core
in vec2 position;
in vec2 texCoord;
out vec2 fragTexCoord;
uniform int flipY;
void main() {
    // Offscreen targets are stored bottom-up, camera frames top-down
    fragTexCoord = flipY == 1 ? vec2(texCoord.x, 1.0 - texCoord.y) : texCoord;
    gl_Position = vec4(position, 0.0, 1.0);
}
"""

LAYER_FRAG_SRC = """
#version 150 core
in vec2 fragTexCoord;
out vec4 outColor;
uniform sampler2D layer;
void main() {
    outColor = texture(layer, fragTexCoord);
}
"""


def _make_texture(width: int, height: int, data=None,
                  internal_format=None, pixel_format=None):
    """Create a linear-filtered, edge-clamped 2D texture."""
    texture = glGenTextures(1)
    glBindTexture(GL_TEXTURE_2D, texture)
    glTexParameteri(GL_TEXTURE_2D, GL_TEXTURE_MIN_FILTER, GL_LINEAR)
    glTexParameteri(GL_TEXTURE_2D, GL_TEXTURE_MAG_FILTER, GL_LINEAR)
    glTexParameteri(GL_TEXTURE_2D, GL_TEXTURE_WRAP_S, GL_CLAMP_TO_EDGE)
    glTexParameteri(GL_TEXTURE_2D, GL_TEXTURE_WRAP_T, GL_CLAMP_TO_EDGE)
    glTexImage2D(
        GL_TEXTURE_2D, 0, internal_format or GL_RGBA,
        width, height, 0, pixel_format or GL_RGBA, GL_UNSIGNED_BYTE, data
    )
    glBindTexture(GL_TEXTURE_2D, 0)
    return texture


class SceneStage:
    """
    Scene graph for one overlay object: camera, lights and the mesh.

    setup() needs a current GL context; everything after it must run on
    the thread that owns that context.
    """

    def __init__(self, config: OverlayConfig):
        self.config = config
        self.size: Tuple[int, int] = (config.frame_width, config.frame_height)

        self.handle = None
        self.projection: Optional[np.ndarray] = None
        self.view: Optional[np.ndarray] = None

        # Programs
        self.mesh_program = None
        self.layer_program = None

        # Overlay mesh (uploaded once on attach)
        self.mesh_vao = None
        self.mesh_vbo = None
        self.mesh_nbo = None
        self.mesh_ibo = None
        self.mesh_index_count = 0

        # Fullscreen quad shared by all layers
        self.quad_vao = None
        self.quad_vbo = None

        # Offscreen overlay target
        self.fbo = None
        self.depth_rbo = None
        self.overlay_texture = None

        # Layers composited in present()
        self.video_texture = None
        self.marker_texture = None
        self.marker_layer: Optional[np.ndarray] = None
        self.markers_dirty = False

        self.render_count = 0
        self._ready = False

    def setup(self, size: Tuple[int, int]):
        """
        Build camera, lights and GL targets for a surface of the given size.

        Args:
            size: (width, height) of the render surface in pixels
        """
        self.size = (int(size[0]), int(size[1]))
        width, height = self.size
        cfg = self.config

        self.projection = perspective_matrix(cfg.camera_fov, width / height,
                                             cfg.camera_near, cfg.camera_far)
        self.view = view_matrix((0.0, 0.0, cfg.camera_z))

        self._load_shaders()
        self._init_quad()
        self._init_offscreen_target()

        self.video_texture = _make_texture(1, 1, np.zeros((1, 1, 3), dtype=np.uint8),
                                           GL_RGB, GL_RGB)
        self.marker_layer = np.zeros((height, width, 4), dtype=np.uint8)
        self.marker_texture = _make_texture(width, height, self.marker_layer)

        self._ready = True
        logger.info("Scene ready: %dx%d, fov %.0f, camera z %.1f",
                    width, height, cfg.camera_fov, cfg.camera_z)

    def _load_shaders(self):
        shader_dir = os.path.join(os.path.dirname(__file__), "shaders")

        with open(os.path.join(shader_dir, "mesh.vert"), "r") as f:
            vert_src = f.read()
        with open(os.path.join(shader_dir, "mesh.frag"), "r") as f:
            frag_src = f.read()

        self.mesh_program = gl_shaders.compileProgram(
            gl_shaders.compileShader(vert_src, GL_VERTEX_SHADER),
            gl_shaders.compileShader(frag_src, GL_FRAGMENT_SHADER),
        )
        self.layer_program = gl_shaders.compileProgram(
            gl_shaders.compileShader(LAYER_VERT_SRC, GL_VERTEX_SHADER),
            gl_shaders.compileShader(LAYER_FRAG_SRC, GL_FRAGMENT_SHADER),
        )

    def _init_quad(self):
        quad = fullscreen_quad()

        self.quad_vao = glGenVertexArrays(1)
        glBindVertexArray(self.quad_vao)

        self.quad_vbo = glGenBuffers(1)
        glBindBuffer(GL_ARRAY_BUFFER, self.quad_vbo)
        glBufferData(GL_ARRAY_BUFFER, quad.nbytes, quad, GL_STATIC_DRAW)

        pos_loc = glGetAttribLocation(self.layer_program, "position")
        tex_loc = glGetAttribLocation(self.layer_program, "texCoord")

        glEnableVertexAttribArray(pos_loc)
        glVertexAttribPointer(pos_loc, 2, GL_FLOAT, GL_FALSE, 16, ctypes.c_void_p(0))
        glEnableVertexAttribArray(tex_loc)
        glVertexAttribPointer(tex_loc, 2, GL_FLOAT, GL_FALSE, 16, ctypes.c_void_p(8))

        glBindVertexArray(0)

    def _init_offscreen_target(self):
        width, height = self.size
        self.overlay_texture = _make_texture(width, height)

        self.depth_rbo = glGenRenderbuffers(1)
        glBindRenderbuffer(GL_RENDERBUFFER, self.depth_rbo)
        glRenderbufferStorage(GL_RENDERBUFFER, GL_DEPTH_COMPONENT24, width, height)
        glBindRenderbuffer(GL_RENDERBUFFER, 0)

        self.fbo = glGenFramebuffers(1)
        glBindFramebuffer(GL_FRAMEBUFFER, self.fbo)
        glFramebufferTexture2D(GL_FRAMEBUFFER, GL_COLOR_ATTACHMENT0,
                               GL_TEXTURE_2D, self.overlay_texture, 0)
        glFramebufferRenderbuffer(GL_FRAMEBUFFER, GL_DEPTH_ATTACHMENT,
                                  GL_RENDERBUFFER, self.depth_rbo)
        status = glCheckFramebufferStatus(GL_FRAMEBUFFER)

        # Start fully transparent: no overlay until the first render
        glClearColor(0.0, 0.0, 0.0, 0.0)
        glClear(GL_COLOR_BUFFER_BIT | GL_DEPTH_BUFFER_BIT)
        glBindFramebuffer(GL_FRAMEBUFFER, 0)

        if status != GL_FRAMEBUFFER_COMPLETE:
            raise RuntimeError(f"Overlay framebuffer incomplete (status 0x{int(status):x})")

    def attach(self, handle):
        """Add the loaded overlay to the scene and upload its mesh."""
        if not self._ready:
            logger.warning("Scene not set up (or already disposed); overlay not attached")
            return
        self.handle = handle
        self.mesh_index_count = handle.index_count

        self.mesh_vao = glGenVertexArrays(1)
        glBindVertexArray(self.mesh_vao)

        self.mesh_vbo = glGenBuffers(1)
        glBindBuffer(GL_ARRAY_BUFFER, self.mesh_vbo)
        glBufferData(GL_ARRAY_BUFFER, handle.vertices.nbytes, handle.vertices, GL_STATIC_DRAW)
        pos_loc = glGetAttribLocation(self.mesh_program, "position")
        glEnableVertexAttribArray(pos_loc)
        glVertexAttribPointer(pos_loc, 3, GL_FLOAT, GL_FALSE, 0, None)

        self.mesh_nbo = glGenBuffers(1)
        glBindBuffer(GL_ARRAY_BUFFER, self.mesh_nbo)
        glBufferData(GL_ARRAY_BUFFER, handle.normals.nbytes, handle.normals, GL_STATIC_DRAW)
        norm_loc = glGetAttribLocation(self.mesh_program, "normal")
        glEnableVertexAttribArray(norm_loc)
        glVertexAttribPointer(norm_loc, 3, GL_FLOAT, GL_FALSE, 0, None)

        self.mesh_ibo = glGenBuffers(1)
        glBindBuffer(GL_ELEMENT_ARRAY_BUFFER, self.mesh_ibo)
        glBufferData(GL_ELEMENT_ARRAY_BUFFER, handle.indices.nbytes, handle.indices, GL_STATIC_DRAW)

        glBindVertexArray(0)
        logger.info("Overlay added to the scene")

    def render_frame(self):
        """Draw the scene with the overlay's current transform into the overlay layer."""
        if not self._ready or self.handle is None:
            return

        width, height = self.size
        cfg = self.config
        transform = self.handle.transform

        glBindFramebuffer(GL_FRAMEBUFFER, self.fbo)
        glViewport(0, 0, width, height)
        glClearColor(0.0, 0.0, 0.0, 0.0)
        glClear(GL_COLOR_BUFFER_BIT | GL_DEPTH_BUFFER_BIT)
        glEnable(GL_DEPTH_TEST)
        glDepthFunc(GL_LESS)

        program = self.mesh_program
        glUseProgram(program)

        model = model_matrix(transform.position, transform.scale)
        glUniformMatrix4fv(glGetUniformLocation(program, "model"), 1, GL_TRUE, model)
        glUniformMatrix4fv(glGetUniformLocation(program, "view"), 1, GL_TRUE, self.view)
        glUniformMatrix4fv(glGetUniformLocation(program, "projection"), 1, GL_TRUE,
                           self.projection)

        light = [c * cfg.light_intensity for c in (1.0, 1.0, 1.0)]
        glUniform3f(glGetUniformLocation(program, "objectColor"), *cfg.overlay_color)
        glUniform3f(glGetUniformLocation(program, "ambientColor"), *hex_to_rgb(cfg.ambient_color))
        glUniform3f(glGetUniformLocation(program, "lightPos"), *cfg.light_position)
        glUniform3f(glGetUniformLocation(program, "lightColor"), *light)
        glUniform1f(glGetUniformLocation(program, "lightRange"), cfg.light_range)

        glBindVertexArray(self.mesh_vao)
        glDrawElements(GL_TRIANGLES, self.mesh_index_count, GL_UNSIGNED_INT, None)
        glBindVertexArray(0)

        glDisable(GL_DEPTH_TEST)
        glBindFramebuffer(GL_FRAMEBUFFER, 0)
        self.render_count += 1

    def annotate_eyes(self, left: Landmark, right: Landmark,
                      geometry: Optional[FrameGeometry] = None):
        """Redraw the debug layer with a red dot on each eye."""
        if self.marker_layer is None:
            return

        width, height = self.size
        sx = width / geometry.width if geometry else 1.0
        sy = height / geometry.height if geometry else 1.0

        self.marker_layer[:] = 0
        for eye in (left, right):
            center = (int(round(eye.x * sx)), int(round(eye.y * sy)))
            cv2.circle(self.marker_layer, center, self.config.marker_radius,
                       MARKER_COLOR, -1, cv2.LINE_AA)
        self.markers_dirty = True

    def _upload_video(self, frame):
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        glBindTexture(GL_TEXTURE_2D, self.video_texture)
        glPixelStorei(GL_UNPACK_ALIGNMENT, 1)
        glTexImage2D(
            GL_TEXTURE_2D, 0, GL_RGB,
            rgb_frame.shape[1], rgb_frame.shape[0],
            0, GL_RGB, GL_UNSIGNED_BYTE, rgb_frame
        )

    def _upload_markers(self):
        width, height = self.size
        glBindTexture(GL_TEXTURE_2D, self.marker_texture)
        glTexSubImage2D(GL_TEXTURE_2D, 0, 0, 0, width, height,
                        GL_RGBA, GL_UNSIGNED_BYTE, self.marker_layer)
        self.markers_dirty = False

    def _draw_layer(self, texture, flip_y: bool = False):
        glActiveTexture(GL_TEXTURE0)
        glBindTexture(GL_TEXTURE_2D, texture)
        glUniform1i(glGetUniformLocation(self.layer_program, "layer"), 0)
        glUniform1i(glGetUniformLocation(self.layer_program, "flipY"), 1 if flip_y else 0)
        glDrawArrays(GL_TRIANGLES, 0, 6)

    def present(self, frame, framebuffer_size: Tuple[int, int]):
        """
        Composite the window: live video, then overlay layer, then markers.

        Args:
            frame: Latest BGR camera frame, or None
            framebuffer_size: Window framebuffer (width, height)
        """
        glBindFramebuffer(GL_FRAMEBUFFER, 0)
        glViewport(0, 0, framebuffer_size[0], framebuffer_size[1])
        glClearColor(0.0, 0.0, 0.0, 1.0)
        glClear(GL_COLOR_BUFFER_BIT)

        if not self._ready:
            return

        glUseProgram(self.layer_program)
        glBindVertexArray(self.quad_vao)

        if frame is not None:
            self._upload_video(frame)
            self._draw_layer(self.video_texture)

        glEnable(GL_BLEND)
        glBlendFunc(GL_SRC_ALPHA, GL_ONE_MINUS_SRC_ALPHA)

        self._draw_layer(self.overlay_texture, flip_y=True)

        if self.config.debug_markers:
            if self.markers_dirty:
                self._upload_markers()
            self._draw_layer(self.marker_texture)

        glDisable(GL_BLEND)
        glBindVertexArray(0)

    def dispose(self):
        """Release all GL objects. Safe to call more than once."""
        if not self._ready:
            return
        self._ready = False

        for program in (self.mesh_program, self.layer_program):
            if program:
                glDeleteProgram(program)

        for vao in (self.mesh_vao, self.quad_vao):
            if vao:
                glDeleteVertexArrays(1, [vao])

        buffers = [b for b in (self.mesh_vbo, self.mesh_nbo, self.mesh_ibo, self.quad_vbo) if b]
        if buffers:
            glDeleteBuffers(len(buffers), buffers)

        if self.fbo:
            glDeleteFramebuffers(1, [self.fbo])
        if self.depth_rbo:
            glDeleteRenderbuffers(1, [self.depth_rbo])

        for texture in (self.overlay_texture, self.video_texture, self.marker_texture):
            if texture:
                glDeleteTextures(1, [texture])

        self.handle = None
        logger.info("Scene disposed")


class GlfwTicker:
    """
    Render tick bound to the display refresh.

    Each tick presents the composited window, swaps buffers (vsync) and
    polls input; a close request is forwarded to on_close.
    """

    def __init__(self, window, scene: SceneStage, context: PipelineContext,
                 on_close: Callable[[], None]):
        self.window = window
        self.scene = scene
        self.context = context
        self.on_close = on_close
        self.ticks = 0

    @property
    def closing(self) -> bool:
        return bool(glfw.window_should_close(self.window))

    async def next_frame(self):
        self.scene.present(self.context.frame, glfw.get_framebuffer_size(self.window))
        glfw.swap_buffers(self.window)
        glfw.poll_events()
        self.ticks += 1

        if self.closing:
            self.on_close()

        # Let finished executor jobs resume before the next cycle
        await asyncio.sleep(0)


class EyewearApp:
    """
    Eyewear try-on window using OpenGL + GLFW.

    Wires camera, pose model, overlay asset and scene into a TrackingLoop
    and runs it until the window closes.
    """

    WINDOW_TITLE = "Eyewear Overlay - Press ESC to exit"

    def __init__(self, config: Optional[OverlayConfig] = None):
        """
        Initialize the app.

        Args:
            config: Overlay configuration (defaults from load_config())
        """
        if not OPENGL_AVAILABLE:
            raise RuntimeError("OpenGL/GLFW not available. Install with: pip install PyOpenGL glfw")

        self.config = config or load_config()
        self.window = None
        self.scene: Optional[SceneStage] = None
        self.pipeline: Optional[TrackingLoop] = None

    def _init_glfw(self) -> bool:
        """Initialize GLFW and create the window."""
        if not glfw.init():
            logger.error("Failed to initialize GLFW")
            return False

        glfw.window_hint(glfw.CONTEXT_VERSION_MAJOR, 3)
        glfw.window_hint(glfw.CONTEXT_VERSION_MINOR, 2)
        glfw.window_hint(glfw.OPENGL_PROFILE, glfw.OPENGL_CORE_PROFILE)
        glfw.window_hint(glfw.OPENGL_FORWARD_COMPAT, GL_TRUE)

        self.window = glfw.create_window(
            self.config.frame_width, self.config.frame_height,
            self.WINDOW_TITLE, None, None
        )

        if not self.window:
            logger.error("Failed to create GLFW window")
            glfw.terminate()
            return False

        glfw.make_context_current(self.window)
        glfw.swap_interval(1)  # VSync drives the render tick

        glfw.set_key_callback(self.window, self._key_callback)
        return True

    def _key_callback(self, window, key, scancode, action, mods):
        """Handle key events."""
        if action != glfw.PRESS:
            return
        if key == glfw.KEY_ESCAPE:
            glfw.set_window_should_close(window, True)
        elif key == glfw.KEY_D:
            self.config.debug_markers = not self.config.debug_markers
            state = "ON" if self.config.debug_markers else "OFF"
            logger.info("Eye markers: %s", state)

    def _build_context(self) -> PipelineContext:
        cfg = self.config
        return PipelineContext(
            estimation=EstimationStage(),
            asset=OverlayAsset(cfg.initial_scale, cfg.initial_position),
            capture=CaptureSource(cfg.camera_index),
            scene=self.scene,
            config=cfg,
        )

    @staticmethod
    async def _start_with_ticks(pipeline: TrackingLoop, ticker) -> PipelineState:
        """Run pipeline.start() while the window keeps presenting and polling input."""
        starting = asyncio.create_task(pipeline.start())
        while not starting.done():
            await ticker.next_frame()
        return starting.result()

    async def _run_async(self):
        context = self._build_context()

        async with TrackingLoop(context) as pipeline:
            ticker = GlfwTicker(self.window, self.scene, context,
                                on_close=pipeline.request_stop)
            pipeline.ticker = ticker
            self.pipeline = pipeline

            state = await self._start_with_ticks(pipeline, ticker)
            if state is PipelineState.TRACKING:
                await pipeline.wait()
            else:
                logger.error("Overlay unavailable (%s); close the window to exit",
                             state.name)
                while not ticker.closing:
                    await ticker.next_frame()

    def run(self):
        """Open the window and run the pipeline until it is closed."""
        if not self._init_glfw():
            return

        self.scene = SceneStage(self.config)
        try:
            asyncio.run(self._run_async())
        finally:
            glfw.terminate()
            logger.info("Eyewear overlay closed")


def run_eyewear_overlay(config: Optional[OverlayConfig] = None):
    """
    Entry point to run the eyewear overlay.

    Args:
        config: Optional configuration; defaults are read from the environment
    """
    config = config or load_config()
    setup_logging(config.log_level)
    app = EyewearApp(config=config)
    app.run()


if __name__ == "__main__":
    run_eyewear_overlay()
