import base64
import io

from PIL import Image

from core.imaging.image_codec import Canvas, RasterImage, decode_header, to_bytes


def _image_bytes(fmt, size=(4, 2), colors=None):
    image = Image.new('RGB', size, (0, 0, 0))
    for (x, y), color in (colors or {}).items():
        image.putpixel((x, y), color)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def _two_halves_png():
    # 左半分が赤、右半分が青
    colors = {}
    for y in range(2):
        for x in range(4):
            colors[(x, y)] = (255, 0, 0) if x < 2 else (0, 0, 255)
    return _image_bytes('PNG', colors=colors)


def test_decode_header_png_and_jpeg():
    png = _image_bytes('PNG', size=(31, 17))
    jpeg = _image_bytes('JPEG', size=(40, 25))

    assert (decode_header(png).width, decode_header(png).height) == (31, 17)
    assert (decode_header(jpeg).width, decode_header(jpeg).height) == (40, 25)


def test_decode_header_unknown_or_truncated():
    assert (decode_header(b'GIF89a....').width, decode_header(b'GIF89a').height) == (0, 0)
    assert decode_header(b'\xff\xd8\xff\xc0\x00').width == 0


def test_to_bytes_accepts_base64_and_buffers():
    raw = b'\x01\x02\x03'
    assert to_bytes(base64.b64encode(raw).decode('ascii')) == raw
    assert to_bytes(bytearray(raw)) == raw
    assert to_bytes(memoryview(raw)) == raw
    assert to_bytes(12) is None


def test_raster_image_from_data_reads_size():
    image = RasterImage.from_data(_image_bytes('PNG', size=(8, 6)))
    assert (image.width, image.height) == (8, 6)


def test_canvas_swaps_halves():
    source = RasterImage.from_data(_two_halves_png())
    canvas = Canvas(4, 2)

    assert canvas.draw_image(source, 0, 0, 2, 2, 2, 0)
    assert canvas.draw_image(source, 2, 0, 2, 2, 0, 0)
    encoded = canvas.encode("image/png")

    with Image.open(io.BytesIO(encoded)) as result:
        result = result.convert('RGB')
        assert result.size == (4, 2)
        assert result.getpixel((0, 0)) == (0, 0, 255)
        assert result.getpixel((3, 1)) == (255, 0, 0)


def test_canvas_jpeg_output():
    canvas = Canvas(4, 2)
    canvas.draw_image(RasterImage.from_data(_two_halves_png()), 0, 0, 4, 2, 0, 0)

    encoded = canvas.encode()
    assert encoded[:2] == b'\xff\xd8'
    assert (decode_header(encoded).width, decode_header(encoded).height) == (4, 2)


def test_canvas_rejects_second_source():
    canvas = Canvas(4, 2)
    assert canvas.draw_image(RasterImage.from_data(_two_halves_png()), 0, 0, 2, 2, 0, 0)
    other = RasterImage.from_data(_image_bytes('PNG', size=(4, 2), colors={(0, 0): (1, 2, 3)}))

    assert not canvas.draw_image(other, 0, 0, 2, 2, 2, 0)
    assert len(canvas.operations) == 1


def test_canvas_without_data_or_size():
    canvas = Canvas()
    assert not canvas.draw_image(RasterImage(0, 0, None), 0, 0, 1, 1, 0, 0)
    assert canvas.encode() is None


def test_canvas_returns_source_when_undecodable():
    garbage = b'\x89PNG\r\n\x1a\n' + b'\x00' * 40
    canvas = Canvas(2, 2)
    canvas.draw_image(RasterImage.from_data(garbage), 0, 0, 1, 1, 0, 0)

    assert canvas.encode() == garbage
