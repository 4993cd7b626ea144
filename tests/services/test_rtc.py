"""Tests for aiortc wire conversions."""

from aiortc import RTCIceServer, RTCSessionDescription

from livecast.schemas import IceCandidatePayload, SessionDescriptionPayload
from livecast.services.media.rtc import (
    build_ice_servers,
    candidate_from_payload,
    candidate_to_payload,
    description_from_payload,
    description_to_payload,
    is_end_of_candidates,
)

HOST_CANDIDATE = "candidate:842163049 1 udp 1677729535 192.168.1.20 54321 typ host"


class TestCandidates:
    def test_candidate_from_payload_strips_prefix(self):
        # Arrange
        payload = IceCandidatePayload(candidate=HOST_CANDIDATE, sdp_mid="0", sdp_m_line_index=0)

        # Act
        candidate = candidate_from_payload(payload)

        # Assert
        assert candidate.foundation == "842163049"
        assert candidate.ip == "192.168.1.20"
        assert candidate.port == 54321
        assert candidate.type == "host"
        assert candidate.sdpMid == "0"
        assert candidate.sdpMLineIndex == 0

    def test_candidate_to_payload_restores_prefix(self):
        # Arrange
        payload = IceCandidatePayload(candidate=HOST_CANDIDATE, sdp_mid="0", sdp_m_line_index=0)

        # Act
        result = candidate_to_payload(candidate_from_payload(payload))

        # Assert
        assert result.candidate.startswith("candidate:842163049 1 udp")
        assert result.sdp_mid == "0"
        assert result.sdp_m_line_index == 0

    def test_empty_candidate_marks_end_of_candidates(self):
        assert is_end_of_candidates(IceCandidatePayload(candidate="")) is True
        assert is_end_of_candidates(IceCandidatePayload(candidate=HOST_CANDIDATE)) is False


class TestDescriptions:
    def test_description_conversion(self):
        # Arrange
        payload = SessionDescriptionPayload(type="answer", sdp="v=0\r\n")

        # Act
        description = description_from_payload(payload)

        # Assert
        assert isinstance(description, RTCSessionDescription)
        assert description_to_payload(description) == payload


class TestIceServers:
    def test_build_ice_servers_from_urls(self):
        servers = build_ice_servers(["stun:stun.example.org:3478"])

        assert len(servers) == 1
        assert isinstance(servers[0], RTCIceServer)
        assert servers[0].urls == "stun:stun.example.org:3478"
