"""
Training objectives and metrics for shortswa.

This module defines:
- Next-token language modeling loss
- Associative recall accuracy (answer positions only)
"""

import torch


def compute_lm_loss(
    logits: torch.Tensor,
    labels: torch.Tensor,
) -> torch.Tensor:
    """
    Compute next-token cross-entropy.

    Labels are already aligned with the logits (labels[t] is the token that
    follows input t), so no shifting happens here.

    Args:
        logits: [B, N, vocab_size] model predictions
        labels: [B, N] with -100 for positions to ignore

    Returns:
        loss: scalar
    """
    loss_fct = torch.nn.CrossEntropyLoss(ignore_index=-100)
    return loss_fct(logits.reshape(-1, logits.size(-1)).float(), labels.reshape(-1))


def recall_accuracy(
    logits: torch.Tensor,
    labels: torch.Tensor,
) -> torch.Tensor:
    """
    Fraction of supervised positions predicted exactly.

    Args:
        logits: [B, N, vocab_size]
        labels: [B, N] with -100 for positions to ignore

    Returns:
        accuracy: scalar in [0, 1] (0 when nothing is supervised)
    """
    supervised = labels != -100
    if not supervised.any():
        return logits.new_zeros(())
    correct = (logits.argmax(dim=-1) == labels) & supervised
    return correct.sum().float() / supervised.sum().float()
