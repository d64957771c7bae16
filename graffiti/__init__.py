"""
Graffiti — single-owner chunks (SOC) and shared-topic graffiti feeds for Swarm.

Architecture:
    SOC address:   keccak256(identifier (32 bytes) + owner (20 bytes))
    SOC signature: sign(keccak256(identifier + content address)), 65 bytes r+s+v
    Graffiti:      identifier = keccak256(consensus id), owner = key of resource id
    Mining:        search resource ids until the SOC lands near a target overlay
"""

__version__ = "0.1.0"

# Chunk layout
SPAN_SIZE = 8  # little-endian uint64 payload length
SEGMENT_SIZE = 32
CHUNK_MAX_PAYLOAD = 4096  # 128 segments
BMT_BRANCHES = CHUNK_MAX_PAYLOAD // SEGMENT_SIZE

# Single-owner chunk layout
IDENTIFIER_SIZE = 32
SIGNATURE_SIZE = 65  # r (32) + s (32) + v (1)
OWNER_SIZE = 20  # Ethereum address
ADDRESS_SIZE = 32

# Network layout returned by GET /chunks/{address}:
#     identifier (32) + signature (65) + span (8) + payload
SOC_IDENTIFIER_OFFSET = 0
SOC_SIGNATURE_OFFSET = SOC_IDENTIFIER_OFFSET + IDENTIFIER_SIZE
SOC_SPAN_OFFSET = SOC_SIGNATURE_OFFSET + SIGNATURE_SIZE
SOC_PAYLOAD_OFFSET = SOC_SPAN_OFFSET + SPAN_SIZE  # 105

# Payload window for graffiti reads
MIN_PAYLOAD_SIZE = 1
MAX_PAYLOAD_SIZE = CHUNK_MAX_PAYLOAD

# Neighborhood depth accepted by the miner (bits)
MAX_PROXIMITY_DEPTH = 32

# Channel defaults
DEFAULT_RESOURCE_ID = "any"
DEFAULT_CONSENSUS_ID = "SimpleGraffiti:v1"
DEFAULT_POSTAGE_BATCH_ID = "00" * 32
DEFAULT_BEE_URL = "http://localhost:1633"

# Postage references as hex strings
POSTAGE_BATCH_ID_HEX_LENGTH = 64
POSTAGE_STAMP_HEX_LENGTH = 226  # 113-byte serialized stamp from the envelope API

# Bee HTTP client
BEE_DEFAULT_TIMEOUT_SECS = 30
BEE_STAMP_POLL_INTERVAL_SECS = 3
BEE_STAMP_USABLE_TIMEOUT_SECS = 100
