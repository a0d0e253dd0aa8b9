# mifaresam

Host-side toolkit for NXP MIFARE SAM AV2 and AV3 secure access modules.

The package builds the command APDUs that a SAM understands and runs the
multi-step protocols around them: host authentication (AV1 and AV2
modes), lock/unlock and the switch to AV2 mode, key entry changes in
plain, MAC and full protection modes, offline key changes, PKI key
generation, import, export and key-entry update, data encipherment and
MAC generation, and MIFARE Plus combined read/write. It also provides a
small queue-based dispatcher for spreading commands over several SAM
workers.

## Installation

```
pip install mifaresam
```

To run the test suite from a checkout:

```
pip install ".[test]"
pytest
```

## Layout

| Module | Contents |
| --- | --- |
| `mifaresam.errors` | `SamError`, `ResponseError`, `check_status`, `check_more_frames` |
| `mifaresam.tools.crc16` | `crc16` (CRC_A, initial value `6363`, low byte first) |
| `mifaresam.tools.protection` | `CommandHeader`, `encrypt_full_protection`, `mac_full_protection`, `offline_change_key_encrypt`, `offline_change_key_mac` |
| `mifaresam.samav2.settings` | `KeyType`, `KeyClass`, `key_class_by_name`, `set_configuration`, `set_configuration_pki`, `ext_set_configuration` |
| `mifaresam.samav2.entrykey` | `EntryKey`, `EntryKeyData`, `ProMasEntryKey` |
| `mifaresam.samav2.publickey` | `PKIPublicKey`, `parse_public_key` |
| `mifaresam.samav2.keymanagement` | ChangeKeyEntry (AV1, plain, MAC, full, offline), ActivateOfflineKey and GetKeyEntry APDUs; `KeyManagementMixin` |
| `mifaresam.samav2.pki` | `HashingAlgorithm`, PKI APDU builders (chained in 255-byte frames); `PKIMixin` |
| `mifaresam.samav2.crypto` | `CryptoAlgorithm`, (de)cipher, MAC and LoadInitVector APDUs; `CryptoMixin` |
| `mifaresam.samav2.readwrite` | `MFPDataType`, combined read/write APDUs; `ReadWriteMixin` |
| `mifaresam.samav2.sam` | `SamAv2`, `connect_sam` and the remaining SAM APDUs |
| `mifaresam.samav3` | `SamAv3`, `connect_sam_av3` |
| `mifaresam.pcsc.card` | `Card`, `CardState` |
| `mifaresam.samfarm.dispatch` | `send_cmd`, `recv_resp`, `reader_channel` |

## Examples

Build APDUs without any hardware:

```python
from mifaresam.samav2.sam import apdu_get_version, apdu_dump_session_key

apdu_get_version()        # b"\x80\x60\x00\x00\x00"
apdu_dump_session_key()   # b"\x80\xd5\x00\x00\x00"
```

Compose the two-byte SET field of a key entry (all flags default to off):

```python
from mifaresam.samav2.settings import KeyType, set_configuration

set_configuration(allow_dump_session_key=True, key_type=KeyType.AES_128)  # b"\x21\x00"
```

Check a response status word. `check_status` accepts `90 00` and
`90 AF` and returns the data without the status word:

```python
from mifaresam.errors import ResponseError, check_status

try:
    data = check_status(response)
except ResponseError as exc:
    print("SAM refused the command:", exc, exc.sw)
```

### Card transport

`Card` wraps a transport object that you supply. It must provide
`transmit(data) -> bytes`, `control(code, data) -> bytes`,
`atr() -> bytes` and `disconnect(disposition)`. `Card.apdu` and
`Card.atr` require the `CardState.CONNECTED` state, `Card.control`
requires `CardState.CONNECTED_DIRECT`; any exception raised by the
transport is re-raised as `SamError`. `Card.uid()` returns the GET DATA
response without its status word, `Card.ats()` the raw response. A
`Card` is a context manager that disconnects on exit.

### Talking to a SAM

```python
from mifaresam.pcsc.card import Card
from mifaresam.samav2.sam import SamAv2

with SamAv2(Card(transport)) as sam:
    version = sam.get_version()
    sam.auth_host_av2(host_key, key_no=0, key_ver=0, host_mode=0)
```

`SamAv2` accepts any object with `apdu`, `atr` and `disconnect`
methods, so a `Card` or a test double will do. `host_key` holds the
16-byte AES host key from your own key store. Host mode 1 derives the
session MAC key (`sam.km`), host mode 2 also the session encryption
key (`sam.ke`); `change_key_entry` then protects the command
accordingly and advances `sam.cmd_ctr`. The host random numbers come
from `secrets.token_bytes` unless you pass `random_bytes=` to the
constructor.

`SamAv3` is a `SamAv2` with `auth_host`, which runs the AV2 host
authentication. `connect_sam(reader)` and `connect_sam_av3(reader)`
wrap whatever `reader.connect_sam_card()` returns.

### Spreading commands over several SAMs

Each SAM is served by `reader_channel(sam, inbound, outbound)` running
in its own thread; queues carry the APDUs and a `None` on a queue marks
it as closed. When the worker stops, it closes `outbound` and
disconnects the SAM.

```python
import queue
import threading

from mifaresam.samav2.sam import apdu_get_version
from mifaresam.samfarm.dispatch import reader_channel, recv_resp, send_cmd

inbound, outbound = queue.Queue(maxsize=1), queue.Queue(maxsize=1)
threading.Thread(target=reader_channel, args=(sam, inbound, outbound), daemon=True).start()

send_cmd(apdu_get_version(), [inbound])      # index of the queue that took it
response, index = recv_resp([outbound])
```

`send_cmd` raises `TimeoutError` when no queue accepts the command
within 20 ms; `recv_resp` raises `TimeoutError` when nothing arrives
within 120 ms and `SamError` when a queue has been closed.

## Errors

Failures reported by the card, malformed responses and transport
failures are raised as `SamError` or its subclass `ResponseError`
(which keeps the `response` and its status word `sw`). Invalid
arguments, such as a wrong key length, data length or host mode, raise
`ValueError`. `decipher_data` always raises `SamError`: that command is
not offered.

## What this package does not do

- It does not talk to a PC/SC service itself: there is no context,
  no reader listing and no connecting by reader name. You supply the
  transport object that `Card` wraps.
- It does not discover SAM devices, authenticate them or expose them
  over a message broker; the dispatcher only moves APDUs between
  in-process queues.
- It installs no command-line program.