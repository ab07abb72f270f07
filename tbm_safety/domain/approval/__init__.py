"""This module handles monthly report approvals and rejections."""
