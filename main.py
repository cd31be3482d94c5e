# main.py

from runner_gradient_check import runner_gradient_check
from runner_training import runner_training


def main() -> None:

    print("=== runner_gradient_check ===")
    runner_gradient_check()

    print("\n=== runner_training (LBFGS) ===")
    runner_training()

    print("\n=== runner_training (GD + Quadratic) ===")
    runner_training(orientation="GD", line_search="Quadratic", max_iterations=100)

    # print("\n=== runner_training (minibatch) ===")
    # runner_training(batch_size=16)


if __name__ == "__main__":
    main()
