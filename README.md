# imagor

Core pieces of an image processing server, as a library. It provides data blobs
whose type is sniffed lazily, a fan-out reader that serves many readers from one
source, cancellable request contexts, errors that carry HTTP status codes,
suppression of duplicate concurrent work, and helpers for caching and download
headers.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Blobs (`imagor.blob`)

A `Blob` wraps some data. The first time you ask about it, it reads the first
512 bytes and works out the type from them.

```python
from imagor.blob import BlobType, new_blob_from_bytes, new_blob_from_file, get_extension

blob = new_blob_from_file("photo.jpg")
blob.blob_type()                  # BlobType.JPEG
blob.content_type()               # "image/jpeg"
get_extension(blob.blob_type())   # ".jpg"
data = blob.read_all()

json_blob = new_blob_from_bytes(b'{"foo": "bar"}')
json_blob.blob_type()             # BlobType.JSON
```

It recognises JPEG, PNG, GIF, WebP, AVIF, HEIF, TIFF, JPEG 2000, BMP, PDF, SVG
and JSON. Any other data gets a generic MIME type from its content.

There are several ways to make a blob:

- `new_blob(factory)`: the factory returns `(reader, size)`. A size of 0 means
  the size is unknown.
- `new_blob_from_file(path, *checks)`: each check receives the `os.stat`
  result and may raise to reject the file. A missing file gives the error
  `ERR_NOT_FOUND`.
- `new_blob_from_bytes(buf)`.
- `new_blob_from_json(value)`.
- `new_blob_from_memory(buf, width, height, bands)`: raw pixel data, returned
  by `memory()`.
- `new_empty_blob()`.

Other methods:

- `new_reader()` and `new_read_seeker()` return fresh `(stream, size)` pairs.
  When the source cannot seek, the seekable stream is buffered in memory or in
  a temporary file.
- `set_content_type()` overrides what sniffing found.
- `err()` reports any error met while opening or sniffing.
- `is_empty()`, `supports_animation()`, `sniff()`, `size()` and `file_path()`
  report on the blob. The `stat` attribute holds a `Stat` with the modified
  time, ETag and size.

When a blob made with `new_blob` or `new_blob_from_file` has a known size under
100 MB, the source is read only once and shared by all of its readers.

The helper `is_blob_empty()` treats `None` as empty. `check_blob()` raises the
blob's error.

## Fan-out reading (`imagor.fanout`)

`Fanout(source, size)` reads a source of known size once, in a background
thread. Any number of `FanoutReader`s made with `new_reader()` can read it at
the same time, and each one starts at the beginning.

If the source ends early, the size shrinks to what was read. A source error is
raised to each reader after the data that arrived before it. Reading from a
closed reader raises `BrokenPipeError`.

## Contexts (`imagor.context`)

`Context` carries values, deadlines and cancellation:

- `with_value`, `with_cancel` and `with_timeout` derive child contexts.
- `cancel`, `value`, `err` and `wait` act on a context.

`with_context` adds a list of callbacks that run when the context ends; add to
it with `context_defer`. `detach_context` keeps the values but drops the
cancellation and deadline, and `is_detached` tells whether a context is
detached.

## Errors (`imagor.errors`)

`ImagorError(message, code)` carries an HTTP status code. Its `to_dict()`
gives the JSON body and `timeout()` tells whether the code is 408 or 504. The
module also defines ready-made errors such as `ERR_NOT_FOUND`,
`ERR_SIGNATURE_MISMATCH`, `ERR_TIMEOUT` and `ERR_TOO_MANY_REQUESTS`.

`wrap_error` turns any exception into an `ImagorError`:

- a timeout becomes `ERR_TIMEOUT`;
- a `ForwardError` becomes `ERR_UNSUPPORTED_FORMAT`;
- a message of the form `imagor: <code> <message>` is parsed back into an
  error;
- anything else becomes a 500 error.

`new_error_from_status_code` builds an error from the standard reason phrase of
a status code.

## Responses (`imagor.response`)

- `get_cache_control(ttl, swr)` builds a Cache-Control value.
- `cache_headers(request_headers, ttl, swr, now=None)` returns the `Expires`
  and `Cache-Control` headers. A `no-cache` request turns caching off.
- `check_stat_not_modified(request_headers, response_headers, stat)` sets
  `ETag` and `Last-Modified`. It returns whether `If-None-Match`,
  `If-Modified-Since` or `If-Unmodified-Since` show the client copy to be
  current.
- `get_content_disposition(filters, image, blob)` takes `(name, args)` filters
  and returns `inline`, or an `attachment` with a filename whose extension
  matches the blob's type.

## Suppression (`imagor.suppress`)

`Suppressor().suppress(ctx, key, fn)` runs `fn(ctx, cb)` at most once at a time
for each key, and concurrent callers with the same key share its result. `cb`
lets the work hand a result back before it finishes. Nested calls with the same
key run directly, so they do not deadlock. A cancelled run is retried by the
callers that joined it.

## Configuration helpers

`imagor.flags.CIDRSliceFlag` parses a comma separated list of CIDR networks.

`imagor.options.apply_options(fs, cb, *options)` chains option factories. Each
factory can ask for the logger and the debug setting before its own option is
made. The resulting options come back in the order they were given, and `None`
entries are skipped.

## What this package does not do

It has no HTTP server and no command-line program. It does not load images over
HTTP or from cloud storage, and it has no storage back ends. It does not resize
or otherwise process images, parse or sign image URLs, or collect metrics. These
pieces are meant to be used by code that provides those parts.