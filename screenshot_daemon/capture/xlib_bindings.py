"""
libX11 ctypes 바인딩 모듈입니다.

역할:
- Xlib C API 중 화면 캡처에 필요한 함수만 Python ctypes로 래핑
  (XOpenDisplay, XDefaultRootWindow, XGetWindowAttributes, XGetImage,
   XDestroyImage, XSetErrorHandler, XSync, XCloseDisplay)
- XImage / XWindowAttributes / XErrorEvent 구조체 정의
- X 프로토콜 에러를 프로세스 종료 대신 예외로 변환하는 에러 핸들러 설치
- XImage → RasterFrame 변환 (픽셀 데이터 복사 후 XImage 즉시 해제)

라이브러리 경로:
    Linux: ctypes.util.find_library("X11") (없으면 libX11.so.6)
"""

from __future__ import annotations

import ctypes
import ctypes.util
import logging
from typing import Optional

from screenshot_daemon.capture import PixelFormat, RasterFrame

logger = logging.getLogger(__name__)

# =============================================================================
# 예외 클래스
# =============================================================================

class DisplayConnectionError(RuntimeError):
    """디스플레이 연결을 열 수 없을 때 발생합니다. 시작 시점에만 발생하며 치명적입니다."""


class XlibNotFoundError(DisplayConnectionError):
    """libX11 공유 라이브러리를 찾을 수 없을 때 발생합니다."""


class CaptureError(RuntimeError):
    """대상 화면을 읽을 수 없을 때 발생합니다. 해당 반복만 건너뜁니다."""


# =============================================================================
# Xlib 상수
# =============================================================================

ZPixmap = 2
LSBFirst = 0
MSBFirst = 1

# 모든 비트 평면 (unsigned long 전체 비트)
AllPlanes = (1 << (8 * ctypes.sizeof(ctypes.c_ulong))) - 1

# XImage.byte_order → PixelFormat.byte_order
BYTE_ORDER_MAP: dict[int, str] = {
    LSBFirst: "little",
    MSBFirst: "big",
}


# =============================================================================
# 구조체 정의
# =============================================================================

class XImage(ctypes.Structure):
    """Xlib XImage 구조체 (X11/Xlib.h)"""
    _fields_ = [
        ("width", ctypes.c_int),
        ("height", ctypes.c_int),
        ("xoffset", ctypes.c_int),
        ("format", ctypes.c_int),
        ("data", ctypes.c_void_p),
        ("byte_order", ctypes.c_int),
        ("bitmap_unit", ctypes.c_int),
        ("bitmap_bit_order", ctypes.c_int),
        ("bitmap_pad", ctypes.c_int),
        ("depth", ctypes.c_int),
        ("bytes_per_line", ctypes.c_int),
        ("bits_per_pixel", ctypes.c_int),
        ("red_mask", ctypes.c_ulong),
        ("green_mask", ctypes.c_ulong),
        ("blue_mask", ctypes.c_ulong),
        ("obdata", ctypes.c_void_p),
        # struct funcs { create_image, destroy_image, get_pixel, put_pixel, sub_image, add_pixel }
        ("f", ctypes.c_void_p * 6),
    ]


class XWindowAttributes(ctypes.Structure):
    """Xlib XWindowAttributes 구조체 (X11/Xlib.h)"""
    _fields_ = [
        ("x", ctypes.c_int),
        ("y", ctypes.c_int),
        ("width", ctypes.c_int),
        ("height", ctypes.c_int),
        ("border_width", ctypes.c_int),
        ("depth", ctypes.c_int),
        ("visual", ctypes.c_void_p),
        ("root", ctypes.c_ulong),
        ("class_", ctypes.c_int),
        ("bit_gravity", ctypes.c_int),
        ("win_gravity", ctypes.c_int),
        ("backing_store", ctypes.c_int),
        ("backing_planes", ctypes.c_ulong),
        ("backing_pixel", ctypes.c_ulong),
        ("save_under", ctypes.c_int),
        ("colormap", ctypes.c_ulong),
        ("map_installed", ctypes.c_int),
        ("map_state", ctypes.c_int),
        ("all_event_masks", ctypes.c_long),
        ("your_event_mask", ctypes.c_long),
        ("do_not_propagate_mask", ctypes.c_long),
        ("override_redirect", ctypes.c_int),
        ("screen", ctypes.c_void_p),
    ]


class XErrorEvent(ctypes.Structure):
    """Xlib XErrorEvent 구조체 (X11/Xlib.h)"""
    _fields_ = [
        ("type", ctypes.c_int),
        ("display", ctypes.c_void_p),
        ("resourceid", ctypes.c_ulong),
        ("serial", ctypes.c_ulong),
        ("error_code", ctypes.c_ubyte),
        ("request_code", ctypes.c_ubyte),
        ("minor_code", ctypes.c_ubyte),
    ]


XErrorHandler = ctypes.CFUNCTYPE(ctypes.c_int, ctypes.c_void_p, ctypes.POINTER(XErrorEvent))


# =============================================================================
# 라이브러리 로드
# =============================================================================

_xlib: Optional[ctypes.CDLL] = None

# 마지막으로 수신한 X 에러 (error_code, request_code). 에러가 없으면 None
_last_x_error: Optional[tuple[int, int]] = None


def _on_x_error(display_ptr, event_ptr) -> int:
    """
    X 프로토콜 에러 핸들러입니다.

    기본 핸들러는 에러 메시지를 출력하고 프로세스를 종료하므로,
    에러 코드만 기록하고 0을 반환하여 호출자가 예외로 처리하도록 합니다.
    """
    global _last_x_error
    event = event_ptr.contents
    _last_x_error = (event.error_code, event.request_code)
    logger.debug(
        f"X 에러 수신: error_code={event.error_code}, "
        f"request_code={event.request_code}, resource=0x{event.resourceid:X}"
    )
    return 0


# ctypes 콜백 객체는 GC되지 않도록 모듈 전역에 보관
_x_error_handler = XErrorHandler(_on_x_error)


def _configure(lib: ctypes.CDLL) -> None:
    """사용하는 Xlib 함수의 인자/반환 타입을 선언합니다."""
    lib.XOpenDisplay.argtypes = [ctypes.c_char_p]
    lib.XOpenDisplay.restype = ctypes.c_void_p

    lib.XCloseDisplay.argtypes = [ctypes.c_void_p]
    lib.XCloseDisplay.restype = ctypes.c_int

    lib.XDefaultRootWindow.argtypes = [ctypes.c_void_p]
    lib.XDefaultRootWindow.restype = ctypes.c_ulong

    lib.XGetWindowAttributes.argtypes = [
        ctypes.c_void_p, ctypes.c_ulong, ctypes.POINTER(XWindowAttributes),
    ]
    lib.XGetWindowAttributes.restype = ctypes.c_int

    lib.XGetImage.argtypes = [
        ctypes.c_void_p,   # Display*
        ctypes.c_ulong,    # Drawable
        ctypes.c_int,      # x
        ctypes.c_int,      # y
        ctypes.c_uint,     # width
        ctypes.c_uint,     # height
        ctypes.c_ulong,    # plane_mask
        ctypes.c_int,      # format
    ]
    lib.XGetImage.restype = ctypes.POINTER(XImage)

    lib.XDestroyImage.argtypes = [ctypes.POINTER(XImage)]
    lib.XDestroyImage.restype = ctypes.c_int

    lib.XSync.argtypes = [ctypes.c_void_p, ctypes.c_int]
    lib.XSync.restype = ctypes.c_int

    lib.XSetErrorHandler.argtypes = [XErrorHandler]
    lib.XSetErrorHandler.restype = ctypes.c_void_p


def _load_xlib() -> ctypes.CDLL:
    """libX11 공유 라이브러리를 로드합니다. 캐싱하여 재사용합니다."""
    global _xlib
    if _xlib is not None:
        return _xlib

    found = ctypes.util.find_library("X11")
    lib_path = found if found else "libX11.so.6"

    try:
        lib = ctypes.CDLL(lib_path)
    except OSError as exc:
        raise XlibNotFoundError(
            f"libX11을 로드할 수 없습니다: {lib_path}\n"
            "X11 클라이언트 라이브러리(libx11)를 설치하세요."
        ) from exc

    _configure(lib)
    lib.XSetErrorHandler(_x_error_handler)
    _xlib = lib

    logger.info(f"libX11 로드 완료: {lib_path}")
    return _xlib


# =============================================================================
# Display 래퍼
# =============================================================================

class XlibDisplay:
    """
    X 디스플레이 연결 래퍼입니다.

    "창 핸들과 사각형을 주면 packed 픽셀 버퍼를 돌려주는" 외부 기능을
    Python 쪽에 노출합니다. 프로세스 수명 동안 하나만 열어 둡니다.
    """

    def __init__(self, handle: int, lib: ctypes.CDLL) -> None:
        self._handle = handle
        self._lib = lib

    @classmethod
    def open(cls, display_name: Optional[str] = None) -> "XlibDisplay":
        """
        X 디스플레이 연결을 엽니다.

        파라미터:
            display_name: ":0" 같은 디스플레이 이름. None 또는 빈 문자열이면 $DISPLAY

        에러:
            DisplayConnectionError: libX11이 없거나 XOpenDisplay가 실패했을 때
        """
        lib = _load_xlib()
        name_bytes = display_name.encode() if display_name else None
        handle = lib.XOpenDisplay(name_bytes)
        if not handle:
            raise DisplayConnectionError(
                f"X 디스플레이를 열 수 없습니다: {display_name or '$DISPLAY'}"
            )
        logger.info(f"X 디스플레이 연결 완료: {display_name or '$DISPLAY'}")
        return cls(handle, lib)

    @property
    def closed(self) -> bool:
        return self._handle is None

    def root_window(self) -> int:
        """기본 스크린의 루트 창 ID를 반환합니다."""
        return self._lib.XDefaultRootWindow(self._handle)

    def geometry(self, window: int) -> tuple[int, int]:
        """
        창의 (width, height)를 반환합니다.

        에러:
            CaptureError: 창 속성을 조회할 수 없을 때
        """
        attributes = XWindowAttributes()
        status = self._lib.XGetWindowAttributes(self._handle, window, ctypes.byref(attributes))
        if not status:
            raise CaptureError(f"창 속성을 조회할 수 없습니다: window=0x{window:X}")
        return attributes.width, attributes.height

    def query_pixel_format(self, window: int) -> PixelFormat:
        """
        1x1 샘플 이미지를 읽어 디스플레이의 packed 픽셀 포맷을 조회합니다.

        에러:
            CaptureError: 샘플 이미지를 읽을 수 없거나 포맷을 해석할 수 없을 때
        """
        image_ptr = self._get_image_ptr(window, 0, 0, 1, 1)
        try:
            image = image_ptr.contents
            return _pixel_format_of(image)
        finally:
            self._lib.XDestroyImage(image_ptr)

    def get_image(self, window: int, x: int, y: int, width: int, height: int) -> RasterFrame:
        """
        창의 사각형 영역을 ZPixmap 형식으로 읽어 RasterFrame으로 반환합니다.

        픽셀 데이터는 Python bytes로 복사되고 XImage는 즉시 해제됩니다.

        에러:
            CaptureError: XGetImage가 실패했을 때 (창 파괴/언맵, 연결 끊김 등)
        """
        image_ptr = self._get_image_ptr(window, x, y, width, height)
        try:
            image = image_ptr.contents
            if not image.data:
                raise CaptureError("XImage에 픽셀 데이터가 없습니다")
            size = image.bytes_per_line * image.height
            return RasterFrame(
                width=image.width,
                height=image.height,
                bytes_per_line=image.bytes_per_line,
                pixel_format=_pixel_format_of(image),
                data=ctypes.string_at(image.data, size),
            )
        finally:
            self._lib.XDestroyImage(image_ptr)

    def close(self) -> None:
        """디스플레이 연결을 닫습니다. 여러 번 호출해도 안전합니다."""
        if self._handle is None:
            return
        self._lib.XCloseDisplay(self._handle)
        self._handle = None
        logger.info("X 디스플레이 연결 종료")

    # =========================================================================
    # 내부 헬퍼
    # =========================================================================

    def _get_image_ptr(self, window: int, x: int, y: int, width: int, height: int):
        global _last_x_error
        if self._handle is None:
            raise CaptureError("디스플레이 연결이 이미 닫혔습니다")

        _last_x_error = None
        image_ptr = self._lib.XGetImage(
            self._handle, window, x, y, width, height, AllPlanes, ZPixmap,
        )
        if not image_ptr:
            # 에러 이벤트가 핸들러까지 전달되도록 동기화
            self._lib.XSync(self._handle, 0)
            detail = ""
            if _last_x_error is not None:
                detail = f" (error_code={_last_x_error[0]}, request_code={_last_x_error[1]})"
            raise CaptureError(
                f"XGetImage 실패: window=0x{window:X}, "
                f"rect=({x}, {y}, {width}x{height}){detail}"
            )
        return image_ptr


def _pixel_format_of(image: XImage) -> PixelFormat:
    """XImage 헤더에서 PixelFormat을 만듭니다."""
    byte_order = BYTE_ORDER_MAP.get(image.byte_order)
    if byte_order is None:
        raise CaptureError(f"알 수 없는 XImage byte_order: {image.byte_order}")
    try:
        return PixelFormat.from_masks(
            bits_per_pixel=image.bits_per_pixel,
            byte_order=byte_order,
            red_mask=image.red_mask,
            green_mask=image.green_mask,
            blue_mask=image.blue_mask,
        )
    except ValueError as exc:
        raise CaptureError(f"지원하지 않는 픽셀 포맷: {exc}") from exc
