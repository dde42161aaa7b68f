"""Face descriptor matching for live attendance.

The detector lives in ``veriattend.recognition.face_detector`` and is imported
explicitly, since it needs the optional face_recognition models.
"""
from .face_matcher import DescriptorMatcher, FaceMatch, KnownDescriptor, MatcherCache
__all__ = ['DescriptorMatcher', 'FaceMatch', 'KnownDescriptor', 'MatcherCache']
